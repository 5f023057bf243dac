from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from liquidity_sniper.chains.evm import EvmLogStream, StreamClosed
from liquidity_sniper.config import AppSettings
from liquidity_sniper.discovery.listener import PairDiscoveryListener
from liquidity_sniper.execution.requestor import ExecutionRequestor
from liquidity_sniper.execution.wallet import HeldKey
from liquidity_sniper.watch.liquidity import LiquidityWatcher


async def run_sniper(
    settings: AppSettings,
    stream,
    requestor: Optional[ExecutionRequestor] = None,
    key: Optional[HeldKey] = None,
) -> None:
    """Run discovery on an open stream until the connection ends.

    Never returns normally: a closed stream surfaces as ``StreamClosed`` and
    any other failure of the dispatcher or the factory subscription propagates.
    """
    requestor = requestor or ExecutionRequestor(settings)
    watcher = LiquidityWatcher(stream, requestor, timeout_sec=settings.liquidity_timeout_sec)
    listener = PairDiscoveryListener(settings, stream, watcher)
    logger.info(
        "Sniper running: executor {} buys {} BNB for wallet {}",
        requestor.buy_url,
        settings.buy_amount_bnb,
        key.address if key and key.address else "<executor default>",
    )

    pump = asyncio.create_task(stream.pump(), name="log-pump")
    listen = asyncio.create_task(listener.run(), name="pair-discovery")
    try:
        done, _ = await asyncio.wait({pump, listen}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in (pump, listen):
            t.cancel()
        await asyncio.gather(pump, listen, return_exceptions=True)
        await listener.aclose()

    # pump first so a closed socket is reported as such
    for t in (pump, listen):
        if t in done and t.exception() is not None:
            raise t.exception()
    raise StreamClosed("PairCreated subscription ended")


async def run(settings: AppSettings) -> None:
    key = HeldKey.load(settings.private_key)
    logger.info("Connecting to {}", settings.ws_rpc)
    stream = await EvmLogStream.connect(settings.ws_rpc)
    try:
        await run_sniper(settings, stream, key=key)
    finally:
        await stream.close()
