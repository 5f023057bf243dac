from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger
from web3 import AsyncWeb3, Web3, WebSocketProvider
from web3.exceptions import Web3Exception
from websockets.exceptions import ConnectionClosed


class StreamClosed(ConnectionError):
    """The node websocket went away. Nothing is resubscribed."""


class LogSubscription:
    """One ``eth_subscribe("logs")`` feed, delivered through a private queue."""

    def __init__(self, stream: EvmLogStream, sub_id: str, label: str):
        self.stream = stream
        self.sub_id = sub_id
        self.label = label
        self.queue: asyncio.Queue[dict] = asyncio.Queue()
        self.closed = False

    async def next(self) -> dict:
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if self.closed:
            raise StopAsyncIteration
        return await self.next()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.stream.unsubscribe(self)


@dataclass
class EvmLogStream:
    """Shared websocket connection that fans log notifications out by subscription id.

    ``pump()`` is the only reader of the socket. It must be running for any
    subscription to receive logs, and it raises ``StreamClosed`` when the
    connection ends.
    """

    w3: Any
    # oldest entries are evicted past these sizes
    retired_max: int = 1024
    early_max: int = 64
    _subs: dict[str, LogSubscription] = field(default_factory=dict)
    # notifications that beat the subscribe() response back to the caller
    _early: OrderedDict[str, list[dict]] = field(default_factory=OrderedDict)
    # released ids whose in-flight notifications are still dropped
    _retired: OrderedDict[str, None] = field(default_factory=OrderedDict)

    @classmethod
    async def connect(cls, ws_url: str) -> EvmLogStream:
        w3 = await AsyncWeb3(WebSocketProvider(ws_url))
        chain_id = await w3.eth.chain_id
        logger.info("Connected to EVM websocket: {} (chain id {})", ws_url, chain_id)
        return cls(w3=w3)

    async def subscribe(
        self, address: str, topics: Iterable[str], label: Optional[str] = None
    ) -> LogSubscription:
        params = {"address": Web3.to_checksum_address(address), "topics": list(topics)}
        sub_id = await self.w3.eth.subscribe("logs", params)
        sub = LogSubscription(self, sub_id, label or address)
        self._subs[sub_id] = sub
        for payload in self._early.pop(sub_id, []):
            sub.queue.put_nowait(payload)
        logger.debug("Subscribed {} -> {}", sub.label, sub_id)
        return sub

    async def unsubscribe(self, sub: LogSubscription) -> None:
        # Stop routing first so nothing reaches the queue while the RPC is in flight
        self._subs.pop(sub.sub_id, None)
        self._retire(sub.sub_id)
        try:
            await self.w3.eth.unsubscribe(sub.sub_id)
        except (ConnectionClosed, OSError, Web3Exception) as e:
            logger.warning("eth_unsubscribe {} failed: {}", sub.sub_id, e)
        logger.debug("Unsubscribed {} ({})", sub.label, sub.sub_id)

    def _retire(self, sub_id: str) -> None:
        self._early.pop(sub_id, None)
        self._retired[sub_id] = None
        while len(self._retired) > self.retired_max:
            self._retired.popitem(last=False)

    def _stash_early(self, sub_id: str, payload: dict) -> None:
        if sub_id not in self._early:
            while len(self._early) >= self.early_max:
                dropped, _ = self._early.popitem(last=False)
                logger.debug("Dropping unclaimed notifications for subscription {}", dropped)
            self._early[sub_id] = []
        pending = self._early[sub_id]
        if len(pending) < self.early_max:
            pending.append(payload)

    def route(self, message: dict) -> None:
        sub_id = message.get("subscription")
        payload = message.get("result")
        if sub_id is None or payload is None:
            logger.debug("Ignoring non-subscription message: {}", message)
            return
        sub = self._subs.get(sub_id)
        if sub is not None:
            sub.queue.put_nowait(payload)
        elif sub_id not in self._retired:
            self._stash_early(sub_id, payload)

    async def pump(self) -> None:
        try:
            async for message in self.w3.socket.process_subscriptions():
                self.route(message)
        except ConnectionClosed as e:
            raise StreamClosed(f"websocket closed (code {getattr(e.rcvd, 'code', None)})") from e
        raise StreamClosed("websocket subscription stream ended")

    async def close(self) -> None:
        try:
            await self.w3.provider.disconnect()
        except (ConnectionClosed, OSError, Web3Exception) as e:
            logger.warning("Websocket disconnect failed: {}", e)
