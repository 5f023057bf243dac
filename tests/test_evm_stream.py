from __future__ import annotations

import asyncio

from fakes import PAIR_1, FakeW3, mint_log


def test_notification_before_subscribe_returns_is_handed_over():
    from liquidity_sniper.chains.evm import EvmLogStream
    from liquidity_sniper.chains.events import MINT_TOPIC

    async def scenario():
        w3 = FakeW3()
        stream = EvmLogStream(w3=w3)
        # node will hand out id 0x1 next
        stream.route({"subscription": "0x1", "result": mint_log(PAIR_1)})
        sub = await stream.subscribe(PAIR_1, [MINT_TOPIC])
        return sub, stream

    sub, stream = asyncio.run(scenario())
    assert sub.sub_id == "0x1"
    assert sub.queue.qsize() == 1
    assert "0x1" not in stream._early


def test_routing_bookkeeping_stays_bounded():
    from liquidity_sniper.chains.evm import EvmLogStream
    from liquidity_sniper.chains.events import MINT_TOPIC

    async def scenario():
        stream = EvmLogStream(w3=FakeW3(), retired_max=8, early_max=4)
        for _ in range(50):
            sub = await stream.subscribe(PAIR_1, [MINT_TOPIC])
            await sub.close()
        last = sub.sub_id
        # ids the node never confirmed to us
        for i in range(100):
            for _ in range(10):
                stream.route({"subscription": f"0xdead{i}", "result": mint_log(PAIR_1)})
        # a late notification for the most recently released id is still dropped
        stream.route({"subscription": last, "result": mint_log(PAIR_1)})
        return stream, last

    stream, last = asyncio.run(scenario())
    assert len(stream._retired) == 8
    assert last in stream._retired
    assert last not in stream._early
    assert len(stream._early) == 4
    assert all(len(v) <= 4 for v in stream._early.values())
    assert stream._subs == {}


def test_close_tolerates_dead_connection(log_lines):
    from liquidity_sniper.chains.evm import EvmLogStream

    class DeadProvider:
        async def disconnect(self):
            raise ConnectionResetError("socket already gone")

    async def scenario():
        w3 = FakeW3()
        w3.provider = DeadProvider()
        await EvmLogStream(w3=w3).close()

    asyncio.run(scenario())
    assert any(line.startswith("WARNING Websocket disconnect failed") for line in log_lines)
