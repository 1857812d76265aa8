from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import date

import psycopg2
import psycopg2.extensions

from taxfiller.errors import BundleSourceError
from taxfiller.models.events import BundleRow
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

DB_NAME = "peersdb"
DB_USER = "postgres"
DB_PORT = 5432

WINNING_BUNDLES_QUERY = """
    SELECT
        txs,
        auction_timestamp,
        address_submitted,
        (SELECT moniker FROM validators WHERE validators.cons_address = winning_bundles.cons_address),
        (SELECT oper_address FROM validators WHERE validators.cons_address = winning_bundles.cons_address),
        val_profit,
        net_profit,
        winning_bundles.height
    FROM winning_bundles INNER JOIN val_profits ON winning_bundles.height = val_profits.height
    WHERE val_profits.timestamp < %(cutoff)s
      AND winning_bundles.height >= COALESCE(%(from_height)s, 0)
    ORDER BY winning_bundles.height ASC
"""

_COLUMNS = (
    "txs",
    "timestamp",
    "address_submitted",
    "moniker",
    "validator_address",
    "val_profit",
    "val_fees",
    "height",
)


class BundleSource(ABC):
    @abstractmethod
    async def fetch(self, from_height: int | None) -> tuple[BundleRow, ...]:
        """Rows with height >= from_height, ascending by height."""


def row_from_record(record: tuple) -> BundleRow:
    values = dict(zip(_COLUMNS, record))
    values["moniker"] = values["moniker"] or ""
    values["validator_address"] = values["validator_address"] or ""
    values["val_profit"] = values["val_profit"] or 0
    values["val_fees"] = values["val_fees"] or 0
    return BundleRow(**values)


class PeersDBSource(BundleSource):
    def __init__(
        self,
        host: str,
        password: str,
        cutoff: date = date(2023, 1, 1),
        dbname: str = DB_NAME,
        user: str = DB_USER,
        port: int = DB_PORT,
        connect_timeout: int = 30,
    ):
        self.host = host
        self.password = password
        self.cutoff = cutoff
        self.dbname = dbname
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout

    def _connect(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password,
            connect_timeout=self.connect_timeout,
        )

    def _query(self, from_height: int | None) -> list[tuple]:
        conn = self._connect()
        try:
            with conn.cursor() as cur:
                cur.execute(WINNING_BUNDLES_QUERY, {"cutoff": self.cutoff, "from_height": from_height})
                return cur.fetchall()
        finally:
            conn.close()

    async def fetch(self, from_height: int | None) -> tuple[BundleRow, ...]:
        logger.debug(f"Querying {self.user}@{self.host}:{self.port}/{self.dbname} from height {from_height}")
        try:
            records = await asyncio.to_thread(self._query, from_height)
        except psycopg2.Error as e:
            raise BundleSourceError(f"Bundle query against {self.host} failed: {e}") from e
        try:
            return tuple(row_from_record(r) for r in records)
        except ValueError as e:
            raise BundleSourceError(f"Unexpected bundle row from {self.host}: {e}") from e

    def __repr__(self) -> str:
        return f"PeersDBSource(host={self.host}, dbname={self.dbname})"
