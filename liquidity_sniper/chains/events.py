from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3Exception


class MalformedLog(ValueError):
    """A log entry that does not decode against the expected event ABI."""


def _load_abi(rel_path: str):
    path = Path(__file__).resolve().parent.parent / "abi" / rel_path
    return json.loads(path.read_text())


FACTORY_ABI = _load_abi("uniswap_v2_factory.json")
PAIR_ABI = _load_abi("uniswap_v2_pair.json")

# Decoding only; no provider is ever contacted
_codec = Web3()
factory_contract = _codec.eth.contract(abi=FACTORY_ABI)
pair_contract = _codec.eth.contract(abi=PAIR_ABI)


def _topic(event) -> str:
    return Web3.to_hex(event_abi_to_log_topic(event.abi))


PAIR_CREATED_TOPIC = _topic(factory_contract.events.PairCreated)
MINT_TOPIC = _topic(pair_contract.events.Mint)
TRANSFER_TOPIC = _topic(pair_contract.events.Transfer)


def process_log(event, log: Any):
    """Decode a raw ``eth_subscribe`` log with web3's event processing.

    Every decoding failure surfaces as ``MalformedLog``.
    """
    try:
        entry = dict(log)
        entry["topics"] = [HexBytes(t) for t in entry["topics"]]
        entry["data"] = HexBytes(entry.get("data") or b"")
        return event().process_log(entry)
    except (KeyError, TypeError, ValueError, DecodingError, Web3Exception) as e:
        raise MalformedLog(f"cannot decode {event.event_name}: {e!r}") from e


def _block_number(bn: Any) -> Optional[int]:
    if bn is None:
        return None
    if isinstance(bn, str):
        return int(bn, 16)
    return int(bn)


@dataclass(frozen=True)
class PairCreatedEvent:
    token0: str
    token1: str
    pair_address: str
    block_number: Optional[int] = None


@dataclass(frozen=True)
class MintEvent:
    sender: str
    amount0: int
    amount1: int


def decode_pair_created(log: Any) -> PairCreatedEvent:
    ev = process_log(factory_contract.events.PairCreated, log)
    return PairCreatedEvent(
        token0=ev["args"]["token0"],
        token1=ev["args"]["token1"],
        pair_address=ev["args"]["pair"],
        block_number=_block_number(ev.get("blockNumber")),
    )


def decode_mint(log: Any) -> MintEvent:
    ev = process_log(pair_contract.events.Mint, log)
    args = ev["args"]
    return MintEvent(sender=args["sender"], amount0=args["amount0"], amount1=args["amount1"])
