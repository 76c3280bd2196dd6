"""Settings loader for the encrypted KV gateway."""
from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .accounts import is_valid_account_id

_SHA256_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


class KeyManagerProgram(BaseModel):
    """Content-addressed reference to the key-manager wasm executed in the TEE."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(
        default="https://github.com/Kampouse/key-manager/releases/download/v0.2.0/key-manager.wasm"
    )
    hash: str = Field(default="44ce9f1f616e765f21fe208eb1ff4db29a7aac90096ca83cf75864793c21e7d3")
    build_target: str = Field(default="wasm32-wasip1", min_length=1)

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, value: str) -> str:
        candidate = value.strip().lower()
        if not _SHA256_HEX_RE.match(candidate):
            raise ValueError("program hash must be a 64-character sha256 hex digest")
        return candidate


class ResourceLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_instructions: int = Field(default=10_000_000_000, gt=0)
    max_memory_mb: int = Field(default=128, gt=0)
    max_execution_seconds: int = Field(default=60, gt=0)


class DeferredCallPolicy(BaseModel):
    """Fixed shape of the unsigned on-chain execution request."""

    model_config = ConfigDict(frozen=True)

    contract_id: str = Field(default="outlayer.near")
    method_name: str = Field(default="request_execution", min_length=1)
    deposit_yocto: int = Field(default=50_000_000_000_000_000_000_000, ge=0)
    gas: int = Field(default=300_000_000_000_000, gt=0)
    submit_url: str = Field(default="https://wallet.near.org/sign")
    instructions: str = Field(
        default="Sign this transaction with your NEAR wallet. Cost: ~0.05 NEAR"
    )

    @field_validator("contract_id")
    @classmethod
    def validate_contract_id(cls, value: str) -> str:
        if not is_valid_account_id(value):
            raise ValueError("contract_id must be a valid NEAR account id")
        return value


def _require_http_url(value: str, name: str) -> str:
    candidate = value.strip().rstrip("/")
    if not candidate.startswith(("http://", "https://")):
        raise ValueError(f"{name} must be an http(s) URL")
    return candidate


class GatewaySettings(BaseSettings):
    key_manager_api_url: str = Field(default="https://api.outlayer.fastnear.com")
    key_manager_project: str = Field(default="Kampouse/key-manager")
    key_manager_timeout_seconds: Optional[float] = Field(default=None)

    near_rpc_url: str = Field(default="https://rpc.mainnet.near.org")
    near_rpc_timeout_seconds: float = Field(default=10.0)
    near_tx_signer_id: str = Field(default="kampouse.near")

    program: KeyManagerProgram = Field(default_factory=KeyManagerProgram)
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    deferred: DeferredCallPolicy = Field(default_factory=DeferredCallPolicy)

    kv_table: str = Field(default="s_kv_last")
    scan_timeout_seconds: float = Field(default=10.0)

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)
    api_root_path: str = Field(default="")
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("key_manager_api_url")
    @classmethod
    def validate_key_manager_api_url(cls, value: str) -> str:
        return _require_http_url(value, "KEY_MANAGER_API_URL")

    @field_validator("near_rpc_url")
    @classmethod
    def validate_near_rpc_url(cls, value: str) -> str:
        return _require_http_url(value, "NEAR_RPC_URL")

    @field_validator("key_manager_project")
    @classmethod
    def validate_project(cls, value: str) -> str:
        candidate = value.strip().strip("/")
        if candidate.count("/") != 1:
            raise ValueError("KEY_MANAGER_PROJECT must look like '<owner>/<project>'")
        return candidate

    @field_validator("near_tx_signer_id")
    @classmethod
    def validate_signer_id(cls, value: str) -> str:
        if not is_valid_account_id(value):
            raise ValueError("NEAR_TX_SIGNER_ID must be a valid NEAR account id")
        return value

    @field_validator("kv_table")
    @classmethod
    def validate_table(cls, value: str) -> str:
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$", value):
            raise ValueError("KV_TABLE must be a plain [keyspace.]table identifier")
        return value

    @field_validator("api_port")
    @classmethod
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator(
        "key_manager_timeout_seconds",
        "near_rpc_timeout_seconds",
        "scan_timeout_seconds",
    )
    @classmethod
    def validate_positive_float(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return value
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        candidate = value.strip().upper()
        if candidate not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level")
        return candidate

    @property
    def key_manager_call_url(self) -> str:
        return f"{self.key_manager_api_url}/call/{self.key_manager_project}"


settings = GatewaySettings()
