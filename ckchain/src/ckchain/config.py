"""
Configuration management using pydantic-settings.

Nested values come from the environment with a ``__`` delimiter, e.g.::

    CRYPTOKIT_LAYER=EthereumMongo
    CRYPTOKIT_RPC__ETH_SERVICE__URL=http://127.0.0.1:8080
    CRYPTOKIT_MONGO__SERVER=mongodb://127.0.0.1:27017
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ckcore.constants import LAST_BLOCK_UPDATE_INTERVAL, TOKEN_UPDATE_INTERVAL
from ckcore.rpc import DEFAULT_CONNECT_TIMEOUT, DEFAULT_RPC_TIMEOUT, JSONRPCClient


class RPCEndpoint(BaseModel):
    """A JSON-RPC service endpoint."""

    url: str
    user: str | None = None
    password: str | None = None
    timeout: float = Field(default=DEFAULT_RPC_TIMEOUT, gt=0)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)

    def create_client(self) -> JSONRPCClient:
        return JSONRPCClient(
            url=self.url,
            user=self.user,
            password=self.password,
            timeout=self.timeout,
            connect_timeout=self.connect_timeout,
        )


class MongoSettings(BaseModel):
    """Connection to the Ethereum transaction index."""

    server: str = "mongodb://127.0.0.1:27017"
    db_name: str = "ethereum"


class AssetSettings(BaseModel):
    """A tracked token, keyed by its asset name in ``Settings.assets``."""

    contract_address: str

    @field_validator("contract_address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.lower()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRYPTOKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend name: Counterparty | Ethereum | EthereumMongo
    layer: str | None = None

    # Named RPC endpoints: bitcoind, counterpartyd, eth-service, geth
    rpc: dict[str, RPCEndpoint] = Field(default_factory=dict)

    mongo: MongoSettings | None = None

    assets: dict[str, AssetSettings] = Field(default_factory=dict)
    # Legacy asset -> contract address map, used when ``assets`` is empty
    contracts: dict[str, str] = Field(default_factory=dict)

    token_cache_ttl: int = Field(default=TOKEN_UPDATE_INTERVAL, ge=0)
    last_block_ttl: int = Field(default=LAST_BLOCK_UPDATE_INTERVAL, ge=0)

    log_level: str = "INFO"

    @field_validator("rpc", mode="before")
    @classmethod
    def normalize_endpoint_names(cls, v: dict | None) -> dict:
        # Environment variables cannot carry dashes: ETH_SERVICE -> eth-service
        if not v:
            return {}
        return {name.lower().replace("_", "-"): endpoint for name, endpoint in v.items()}

    def asset_contracts(self) -> dict[str, str]:
        """Asset name -> contract address for every configured token."""
        if self.assets:
            return {name: asset.contract_address for name, asset in self.assets.items()}
        return {name: address.lower() for name, address in self.contracts.items()}


def get_settings() -> Settings:
    return Settings()
