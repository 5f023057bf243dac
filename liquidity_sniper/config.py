from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

# PancakeSwap V2 factory on BNB Smart Chain
PANCAKE_V2_FACTORY = "0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), extra="ignore", frozen=True)

    # Chain event source
    ws_rpc: str = "ws://localhost:8546"
    private_key: str | None = None  # held only; signing happens in the executor
    factory_address: str = PANCAKE_V2_FACTORY
    wbnb_address: str | None = None  # reference asset; None tracks every pair

    # Execution service
    executor_url: str = "http://127.0.0.1:8080"
    executor_timeout_sec: float = 15.0
    dry_run: bool = False

    # Purchase defaults
    buy_amount_bnb: Decimal = Decimal("0.02")
    slippage: float = 0.30  # fraction, 0.30 == 30%
    deadline_secs: int = 60

    # Liquidity watcher
    liquidity_timeout_sec: float = 120.0

    # Logging
    log_level: str = "INFO"

    # --- Validators to coerce empty strings in optional envs to None ---
    @field_validator("private_key", "wbnb_address", mode="before")
    @classmethod
    def _empty_str_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("factory_address", "wbnb_address")
    @classmethod
    def _valid_address(cls, v):
        if v is None:
            return v
        if not Web3.is_address(v):
            raise ValueError(f"not an EVM address: {v!r}")
        return Web3.to_checksum_address(v)

    @field_validator("executor_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("buy_amount_bnb")
    @classmethod
    def _positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("buy_amount_bnb must be positive")
        return v

    @field_validator("slippage")
    @classmethod
    def _slippage_fraction(cls, v: float) -> float:
        if not 0.0 <= v < 1.0:
            raise ValueError("slippage is a fraction in [0, 1)")
        return v

    @field_validator("deadline_secs")
    @classmethod
    def _positive_deadline(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("deadline_secs must be positive")
        return v

    @field_validator("liquidity_timeout_sec", "executor_timeout_sec")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    def reference_asset(self) -> str | None:
        # EVM addresses are case-insensitive; compare in lowercase
        return self.wbnb_address.lower() if self.wbnb_address else None
