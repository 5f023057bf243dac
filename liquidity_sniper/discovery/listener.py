from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any, Optional

from loguru import logger

from liquidity_sniper.chains.events import (
    PAIR_CREATED_TOPIC,
    MalformedLog,
    PairCreatedEvent,
    decode_pair_created,
)
from liquidity_sniper.config import AppSettings
from liquidity_sniper.watch.liquidity import LiquidityWatcher, Resolution, WatchedPair


def select_target_token(event: PairCreatedEvent, reference: Optional[str]) -> Optional[str]:
    """Return the token to buy, or None when the pair is not worth tracking.

    ``reference`` must already be lowercase. With no reference asset every
    pair is tracked and ``token0`` is the target.
    """
    if reference is None:
        return event.token0
    is0 = event.token0.lower() == reference
    is1 = event.token1.lower() == reference
    if is0 == is1:
        return None
    return event.token1 if is0 else event.token0


class PairDiscoveryListener:
    def __init__(self, settings: AppSettings, stream, watcher: LiquidityWatcher):
        self.settings = settings
        self.stream = stream
        self.watcher = watcher
        self.reference = settings.reference_asset()
        # pair addresses (lowercase) that already got a watcher in this run
        self.seen: set[str] = set()
        self.tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        sub = await self.stream.subscribe(
            self.settings.factory_address, [PAIR_CREATED_TOPIC], label="PairCreated"
        )
        if self.reference:
            logger.info("Listening for PairCreated events (reference asset {})", self.settings.wbnb_address)
        else:
            logger.warning("No reference asset configured; every new pair will be watched")
        async for log in sub:
            self.handle(log)

    def handle(self, log: Any) -> Optional[asyncio.Task]:
        if isinstance(log, Mapping) and log.get("removed"):
            logger.debug("Ignoring removed (reorged) PairCreated log")
            return None
        try:
            event = decode_pair_created(log)
        except MalformedLog as e:
            logger.warning("Discarding malformed PairCreated log: {}", e)
            return None
        logger.info("PairCreated {} {} {}", event.token0, event.token1, event.pair_address)

        target = select_target_token(event, self.reference)
        if target is None:
            logger.debug("Not a reference-asset pair, skipping {}", event.pair_address)
            return None

        key = event.pair_address.lower()
        if key in self.seen:
            logger.debug("Pair {} already watched in this run", event.pair_address)
            return None
        self.seen.add(key)

        pair = WatchedPair(pair_address=event.pair_address, target_token=target)
        task = asyncio.create_task(self._watch(pair), name=f"watch-{event.pair_address}")
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def _watch(self, pair: WatchedPair) -> Optional[Resolution]:
        try:
            return await self.watcher.watch(pair)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Watcher for pair {} failed: {}", pair.pair_address, e)
            return None

    async def aclose(self) -> None:
        tasks = list(self.tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
