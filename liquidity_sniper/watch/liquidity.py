from __future__ import annotations

import asyncio
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from loguru import logger

from liquidity_sniper.chains.events import MINT_TOPIC, TRANSFER_TOPIC, MalformedLog, decode_mint
from liquidity_sniper.execution.requestor import ExecutionRequestor


class Resolution(str, Enum):
    MINT = "mint"
    TRANSFER = "transfer"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class WatchedPair:
    pair_address: str
    target_token: str
    created_at: float = field(default_factory=time.time)


class LiquidityWatcher:
    """Waits for the first liquidity signal on a freshly created pair.

    A ``Mint`` log is the canonical signal; a ``Transfer`` log on the pair
    catches liquidity seeded by direct transfer. Whichever arrives first, or
    the timeout, resolves the watch. Both subscriptions are closed before the
    buy is requested, so a pair yields at most one request.
    """

    def __init__(self, stream, requestor: ExecutionRequestor, timeout_sec: float = 120.0):
        self.stream = stream
        self.requestor = requestor
        self.timeout_sec = timeout_sec

    async def watch(self, pair: WatchedPair) -> Resolution:
        async with AsyncExitStack() as stack:
            mint = await self.stream.subscribe(
                pair.pair_address, [MINT_TOPIC], label=f"Mint@{pair.pair_address}"
            )
            stack.push_async_callback(mint.close)
            transfer = await self.stream.subscribe(
                pair.pair_address, [TRANSFER_TOPIC], label=f"Transfer@{pair.pair_address}"
            )
            stack.push_async_callback(transfer.close)
            logger.info(
                "Watching pair {} for liquidity (target {}, {}s window)",
                pair.pair_address,
                pair.target_token,
                self.timeout_sec,
            )
            resolution, log = await self._race(mint, transfer)

        waited = time.time() - pair.created_at
        if resolution is Resolution.TIMEOUT:
            logger.info("Timeout: stopped listening to pair {} after {:.1f}s", pair.pair_address, waited)
            return resolution

        if resolution is Resolution.MINT:
            try:
                m = decode_mint(log)
                logger.info(
                    "Liquidity detected for {} (Mint amount0={} amount1={}) after {:.1f}s",
                    pair.target_token,
                    m.amount0,
                    m.amount1,
                    waited,
                )
            except MalformedLog as e:
                logger.warning("Liquidity detected for {} (undecodable Mint: {})", pair.target_token, e)
        else:
            logger.info("Liquidity detected for {} (Transfer) after {:.1f}s", pair.target_token, waited)

        await self.requestor.buy(pair.target_token)
        return resolution

    async def _race(self, mint, transfer) -> tuple[Resolution, Optional[dict]]:
        # Insertion order decides ties: Mint beats Transfer when both are ready
        waits = {
            asyncio.create_task(mint.next()): Resolution.MINT,
            asyncio.create_task(transfer.next()): Resolution.TRANSFER,
        }
        try:
            done, _ = await asyncio.wait(
                waits, timeout=self.timeout_sec, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [t for t in waits if not t.done()]
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task, outcome in waits.items():
            if task in done:
                return outcome, task.result()
        return Resolution.TIMEOUT, None
