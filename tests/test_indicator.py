from __future__ import annotations

import asyncio

from linkband_monitor.indicator import PendingIndicator


def test_tick_cycles_dots(store):
    async def scenario():
        indicator = PendingIndicator(store, interval=0.01)
        dots = []
        store.watch("indicator_dots", dots.append)
        indicator.show()
        assert indicator.running
        while len(dots) < 5:
            await asyncio.sleep(0.005)
        indicator.hide()
        return dots

    dots = asyncio.run(scenario())
    assert dots[:5] == [1, 2, 3, 1, 2]


def test_hide_cancels_and_resets(store):
    async def scenario():
        indicator = PendingIndicator(store, interval=0.01)
        indicator.show()
        indicator.show()
        await asyncio.sleep(0.025)
        indicator.hide()
        await asyncio.sleep(0)
        after_hide = store.get("indicator_dots")
        await asyncio.sleep(0.03)
        return indicator.running, after_hide, store.get("indicator_dots")

    running, after_hide, later = asyncio.run(scenario())
    assert running is False
    assert after_hide == 1
    assert later == 1


def test_hide_without_show_is_harmless(store):
    indicator = PendingIndicator(store)
    indicator.hide()
    assert store.get("indicator_dots") == 1
