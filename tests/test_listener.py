from __future__ import annotations

import asyncio

from fakes import FACTORY, PAIR_1, PAIR_2, TOKEN_A, TOKEN_B, WBNB, FakeW3, pair_created_log, wait_until


class RecordingWatcher:
    def __init__(self):
        self.pairs = []

    async def watch(self, pair):
        from liquidity_sniper.watch.liquidity import Resolution

        self.pairs.append(pair)
        return Resolution.TIMEOUT


def _listener(wbnb=WBNB, watcher=None, stream=None):
    from liquidity_sniper.config import AppSettings
    from liquidity_sniper.discovery.listener import PairDiscoveryListener

    settings = AppSettings(_env_file=None, factory_address=FACTORY, wbnb_address=wbnb)
    return PairDiscoveryListener(settings, stream, watcher or RecordingWatcher())


def test_select_target_token():
    from liquidity_sniper.chains.events import PairCreatedEvent
    from liquidity_sniper.discovery.listener import select_target_token

    ev = PairCreatedEvent(token0=WBNB.upper().replace("0X", "0x"), token1=TOKEN_A, pair_address=PAIR_1)
    assert select_target_token(ev, WBNB) == TOKEN_A
    ev = PairCreatedEvent(token0=TOKEN_A, token1=WBNB, pair_address=PAIR_1)
    assert select_target_token(ev, WBNB) == TOKEN_A
    ev = PairCreatedEvent(token0=TOKEN_A, token1=TOKEN_B, pair_address=PAIR_1)
    assert select_target_token(ev, WBNB) is None
    assert select_target_token(ev, None) == TOKEN_A
    ev = PairCreatedEvent(token0=WBNB, token1=WBNB, pair_address=PAIR_1)
    assert select_target_token(ev, WBNB) is None


def test_non_reference_pair_spawns_no_watcher():
    async def scenario():
        watcher = RecordingWatcher()
        listener = _listener(watcher=watcher)
        assert listener.handle(pair_created_log(TOKEN_A, TOKEN_B, PAIR_1)) is None
        await asyncio.sleep(0)
        return watcher

    watcher = asyncio.run(scenario())
    assert watcher.pairs == []


def test_reference_pair_targets_other_token():
    async def scenario():
        watcher = RecordingWatcher()
        listener = _listener(watcher=watcher)
        t1 = listener.handle(pair_created_log(WBNB, TOKEN_A, PAIR_1))
        t2 = listener.handle(pair_created_log(TOKEN_B, WBNB, PAIR_2))
        await asyncio.gather(t1, t2)
        return watcher

    watcher = asyncio.run(scenario())
    got = {(p.pair_address.lower(), p.target_token.lower()) for p in watcher.pairs}
    assert got == {(PAIR_1, TOKEN_A), (PAIR_2, TOKEN_B)}


def test_no_reference_tracks_every_pair_by_token0():
    async def scenario():
        watcher = RecordingWatcher()
        listener = _listener(wbnb=None, watcher=watcher)
        await listener.handle(pair_created_log(TOKEN_B, TOKEN_A, PAIR_1))
        return watcher

    watcher = asyncio.run(scenario())
    assert [p.target_token.lower() for p in watcher.pairs] == [TOKEN_B]


def test_same_pair_watched_once_per_run():
    async def scenario():
        watcher = RecordingWatcher()
        listener = _listener(watcher=watcher)
        first = listener.handle(pair_created_log(WBNB, TOKEN_A, PAIR_1))
        second = listener.handle(pair_created_log(WBNB, TOKEN_A, PAIR_1.upper().replace("0X", "0x")))
        await first
        return watcher, second

    watcher, second = asyncio.run(scenario())
    assert second is None
    assert len(watcher.pairs) == 1


def test_malformed_and_removed_logs_discarded(log_lines):
    async def scenario():
        watcher = RecordingWatcher()
        listener = _listener(watcher=watcher)
        assert listener.handle({"topics": []}) is None
        assert listener.handle({**pair_created_log(WBNB, TOKEN_A, PAIR_1), "removed": True}) is None
        # still alive after bad input
        await listener.handle(pair_created_log(WBNB, TOKEN_A, PAIR_2))
        return watcher

    watcher = asyncio.run(scenario())
    assert len(watcher.pairs) == 1
    assert any(line.startswith("WARNING Discarding malformed PairCreated log") for line in log_lines)


def test_failing_watcher_is_isolated(log_lines):
    class ExplodingWatcher:
        async def watch(self, pair):
            raise RuntimeError("kaboom")

    async def scenario():
        listener = _listener(watcher=ExplodingWatcher())
        return await listener.handle(pair_created_log(WBNB, TOKEN_A, PAIR_1))

    assert asyncio.run(scenario()) is None
    assert any(line.startswith("ERROR Watcher for pair") for line in log_lines)


def test_run_subscribes_once_to_factory_and_dispatches():
    from liquidity_sniper.chains.evm import EvmLogStream

    async def scenario():
        w3 = FakeW3()
        stream = EvmLogStream(w3=w3)
        watcher = RecordingWatcher()
        listener = _listener(watcher=watcher, stream=stream)
        pump = asyncio.create_task(stream.pump())
        run = asyncio.create_task(listener.run())
        await wait_until(lambda: len(w3.filters) == 1)
        w3.emit(pair_created_log(WBNB, TOKEN_A, PAIR_1))
        w3.emit(pair_created_log(TOKEN_A, TOKEN_B, PAIR_2))
        await wait_until(lambda: len(watcher.pairs) == 1)
        await asyncio.sleep(0.02)
        run.cancel()
        pump.cancel()
        await asyncio.gather(run, pump, return_exceptions=True)
        return w3, watcher

    w3, watcher = asyncio.run(scenario())
    assert w3.counter == 1
    (params,) = w3.filters.values()
    assert params["address"].lower() == FACTORY
    assert watcher.pairs[0].target_token.lower() == TOKEN_A
