import importlib

import pytest


pytestmark = pytest.mark.asyncio


async def test_tick_counts_up_and_fires_at_threshold():
    counter_mod = importlib.import_module('core.counter')
    counter = counter_mod.StallCounter()
    fired = []

    async def on_threshold():
        fired.append('x')

    assert await counter.tick('a', on_threshold, 3) == 1
    assert await counter.tick('a', on_threshold, 3) == 2
    assert not fired
    assert await counter.tick('a', on_threshold, 3) == 3
    assert fired == ['x']
    # Cleared after firing
    assert counter.get('a') == 0
    assert 'a' not in counter


async def test_sync_callback_is_supported():
    counter = importlib.import_module('core.counter').StallCounter()
    fired = []
    await counter.tick('k', lambda: fired.append(1), 1)
    assert fired == [1]


async def test_condition_gone_resets_count():
    counter = importlib.import_module('core.counter').StallCounter()
    await counter.tick('a', None, 5)
    await counter.tick('a', None, 5)
    assert counter.get('a') == 2
    counter.clear('a')
    assert counter.get('a') == 0
    # Starts over from one
    assert await counter.tick('a', None, 5) == 1


async def test_raising_callback_still_resets():
    counter = importlib.import_module('core.counter').StallCounter()

    async def boom():
        raise RuntimeError('nope')

    with pytest.raises(RuntimeError):
        await counter.tick('a', boom, 1)
    assert counter.get('a') == 0


async def test_retain_drops_unseen_keys():
    counter = importlib.import_module('core.counter').StallCounter()
    for key in ('a', 'b', 'c'):
        await counter.tick(key, None, 10)
    counter.retain(['b'])
    assert counter.keys() == ['b']
    assert len(counter) == 1
