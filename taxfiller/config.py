from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Tuple

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from taxfiller.errors import ConfigError
from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILE = "taxes.toml"


class GeneralSettings(BaseModel):
    output_dir: str = "."
    http_timeout: float = 30.0
    row_timeout: float = 120.0
    rpc_max_attempts: int = Field(default=3, ge=1)
    report_cutoff: date = date(2023, 1, 1)


class ChainSettings(BaseModel):
    skip_address: str
    token: str
    redis_address: str = "localhost:6379"
    db_host: str = "localhost"
    db_password: str = ""
    node_address: str
    test_accts: list[str] = Field(default_factory=list)
    num_threads: int = Field(default=1, ge=1)

    model_config = {"frozen": True, "extra": "ignore"}


@dataclass(frozen=True)
class ChainPipelineConfig:
    chain_id: str
    auction_house: str
    token: str
    test_accounts: frozenset[str]
    workers: int
    redis_address: str
    db_host: str
    db_password: str
    node_address: str
    http_timeout: float
    row_timeout: float
    rpc_max_attempts: int
    report_cutoff: date
    output_dir: Path

    def is_test_account(self, address: str) -> bool:
        return address in self.test_accounts


class Config(BaseSettings):
    general: GeneralSettings = GeneralSettings()
    chains: dict[str, ChainSettings] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="TAXFILLER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        _ = (dotenv_settings, file_secret_settings)

        return (
            env_settings,
            init_settings,
        )

    def with_password(self, password: str | None) -> Config:
        """Override the database password of every configured chain."""
        if not password:
            return self
        chains = {chain_id: chain.model_copy(update={"db_password": password}) for chain_id, chain in self.chains.items()}
        return self.model_copy(update={"chains": chains})

    def for_chain(self, chain_id: str) -> ChainPipelineConfig:
        chain = self.chains.get(chain_id)
        if chain is None:
            raise ConfigError(f"No configuration for chain '{chain_id}'")
        return ChainPipelineConfig(
            chain_id=chain_id,
            auction_house=chain.skip_address,
            token=chain.token,
            test_accounts=frozenset(chain.test_accts),
            workers=chain.num_threads,
            redis_address=chain.redis_address,
            db_host=chain.db_host,
            db_password=chain.db_password,
            node_address=chain.node_address.rstrip("/"),
            http_timeout=self.general.http_timeout,
            row_timeout=self.general.row_timeout,
            rpc_max_attempts=self.general.rpc_max_attempts,
            report_cutoff=self.general.report_cutoff,
            output_dir=Path(self.general.output_dir),
        )


def load_config(home: str | Path = ".", password: str | None = None) -> Config:
    path = Path(home) / CONFIG_FILE
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        values = TomlConfigSettingsSource(Config, toml_file=path)()
        config = Config(**values)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e

    if not config.chains:
        raise ConfigError(f"No chains configured in {path}")

    logger.debug(f"Loaded {len(config.chains)} chain(s) from {path}: {', '.join(config.chains)}")
    return config.with_password(password)
