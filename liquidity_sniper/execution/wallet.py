from __future__ import annotations

from dataclasses import dataclass, field

from eth_account import Account
from loguru import logger


@dataclass
class HeldKey:
    # Signing is done by the execution service; the key is only held here.
    private_key: str | None = field(repr=False)
    address: str | None

    @classmethod
    def load(cls, private_key: str | None) -> HeldKey:
        if not private_key:
            logger.warning("PRIVATE_KEY not set; continuing without a local key")
            return cls(private_key=None, address=None)
        # Raises ValueError on malformed key material, which aborts startup
        addr = Account.from_key(private_key).address
        logger.info("Wallet address: {}", addr)
        return cls(private_key=private_key, address=addr)
