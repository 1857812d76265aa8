"""Ledger query client.

Resolves a transaction hash against a node's ``/tx`` RPC endpoint and
decodes the returned Cosmos SDK envelope. Network and decoding problems
are never fatal: they are logged and the transaction is treated as
"not a transfer of interest".
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import httpx
from cosmpy.protos.cosmos.bank.v1beta1.tx_pb2 import MsgSend
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import AuthInfo, TxBody, TxRaw
from google.protobuf.message import DecodeError, Message

from taxfiller.core.retry import rpc_retrying
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

MSG_SEND_TYPE_URL = "/cosmos.bank.v1beta1.MsgSend"


@dataclass(frozen=True)
class ValueTransfer:
    sender: str
    receiver: str
    amount: int


@dataclass(frozen=True)
class OtherMessage:
    type_url: str


DecodedMessage = ValueTransfer | OtherMessage


@dataclass(frozen=True)
class DecodedTx:
    fee: int
    messages: tuple[DecodedMessage, ...] = ()

    @property
    def transfers(self) -> tuple[ValueTransfer, ...]:
        return tuple(m for m in self.messages if isinstance(m, ValueTransfer))

    def payment_into(self, address: str) -> tuple[int, int] | None:
        """(amount, fee) of the first transfer addressed to `address`."""
        for transfer in self.transfers:
            if transfer.receiver == address:
                return transfer.amount, self.fee
        return None

    def payment_from(self, address: str) -> str | None:
        """Receiver of the first transfer sent by `address`."""
        for transfer in self.transfers:
            if transfer.sender == address:
                return transfer.receiver
        return None


@dataclass(frozen=True)
class TxDecoder:
    """Immutable registry of the message types the client knows how to read."""

    registry: Mapping[str, type[Message]] = field(
        default_factory=lambda: MappingProxyType({MSG_SEND_TYPE_URL: MsgSend})
    )

    def decode(self, raw: bytes) -> DecodedTx | None:
        """Decode a raw envelope. Returns None for anything that is not a fee-paying tx."""
        tx_raw = TxRaw()
        body = TxBody()
        auth_info = AuthInfo()
        try:
            tx_raw.ParseFromString(raw)
            body.ParseFromString(tx_raw.body_bytes)
            auth_info.ParseFromString(tx_raw.auth_info_bytes)
        except DecodeError as e:
            logger.debug(f"Undecodable transaction envelope: {e}")
            return None

        fee_coins = list(auth_info.fee.amount)
        if not fee_coins:
            return None

        messages = tuple(self._decode_message(any_msg.type_url, any_msg.value) for any_msg in body.messages)
        return DecodedTx(fee=_coin_amount(fee_coins[0].amount), messages=messages)

    def _decode_message(self, type_url: str, value: bytes) -> DecodedMessage:
        msg_cls = self.registry.get(type_url)
        if msg_cls is None:
            return OtherMessage(type_url)
        msg = msg_cls()
        try:
            msg.ParseFromString(value)
        except DecodeError:
            return OtherMessage(type_url)
        if isinstance(msg, MsgSend) and len(msg.amount) > 0:
            return ValueTransfer(
                sender=msg.from_address,
                receiver=msg.to_address,
                amount=_coin_amount(msg.amount[0].amount),
            )
        return OtherMessage(type_url)


def _coin_amount(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def extract_tx_bytes(payload: Any) -> bytes | None:
    """Pull the base64 ``result.tx`` field out of a node response."""
    if not isinstance(payload, dict):
        logger.debug(f"Unexpected response body: {payload!r}")
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        logger.debug(f"Result incorrectly formatted: {payload!r}")
        return None
    encoded = result.get("tx")
    if not isinstance(encoded, str):
        logger.debug(f"No tx field in result: {result!r}")
        return None
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.debug(f"Bad base64 tx bytes: {e}")
        return None


class LedgerClient:
    def __init__(
        self,
        node_address: str,
        auction_house: str,
        decoder: TxDecoder | None = None,
        http_timeout: float = 30.0,
        max_attempts: int = 3,
    ):
        self.node_address = node_address.rstrip("/")
        self.auction_house = auction_house
        self.decoder = decoder or TxDecoder()
        self.http_timeout = http_timeout
        self._client: httpx.AsyncClient | None = None
        self.max_attempts = max_attempts

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.http_timeout)
        return self._client

    async def _get_once(self, tx_hash: str) -> Any:
        client = await self._get_client()
        r = await client.get(f"{self.node_address}/tx", params={"hash": f"0x{tx_hash}"})
        r.raise_for_status()
        return r.json()

    async def _get(self, tx_hash: str) -> Any:
        return await rpc_retrying(self.max_attempts)(self._get_once, tx_hash)

    async def tx_bytes(self, tx_hash: str) -> bytes | None:
        try:
            payload = await self._get(tx_hash)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch tx {tx_hash}: {e!r}")
            return None
        return extract_tx_bytes(payload)

    async def resolve(self, tx_hash: str) -> DecodedTx | None:
        raw = await self.tx_bytes(tx_hash)
        if raw is None:
            return None
        decoded = self.decoder.decode(raw)
        if decoded is None:
            logger.debug(f"Tx {tx_hash} is not a fee-paying transaction")
        return decoded

    async def check_auction_fee(self, tx_hash: str) -> tuple[int, int]:
        """Amount and fee of the first transfer into the auction house, or (0, 0)."""
        decoded = await self.resolve(tx_hash)
        if decoded is None:
            return 0, 0
        return decoded.payment_into(self.auction_house) or (0, 0)

    async def check_validator_payment(self, tx_hash: str) -> str | None:
        """Receiver of the first transfer sent from the auction house, if any."""
        decoded = await self.resolve(tx_hash)
        if decoded is None:
            return None
        return decoded.payment_from(self.auction_house)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: object,
    ) -> None:
        await self.close()
