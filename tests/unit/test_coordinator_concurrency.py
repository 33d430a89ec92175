"""
Several coordinators sharing one store stand in for independent stateless
instances racing on the same stale state.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from question_rotation.domain.models import Item, ItemFlag
from question_rotation.infrastructure.memory_store import MemoryItemStore
from tests.fakes import CountingGenerator

WINDOW = datetime(2026, 3, 10, tzinfo=timezone.utc)
INSTANCE_COUNT = 8
RANDOM_STEPS = 15
STORE_LATENCY = 0.001

STALE_TEXT = "Which question did the last window leave behind?"
STAGED_TEXT = "Which question is waiting for this window?"


def _assert_single_holders(store: MemoryItemStore) -> None:
    items = store.items()
    assert sum(item.is_current for item in items) <= 1
    assert sum(item.is_next for item in items) <= 1
    assert not any(item.is_current and item.is_next for item in items)


@pytest.mark.asyncio
@pytest.mark.parametrize("operation", ["get_current", "force_rotate"])
async def test_racing_instances_promote_the_same_staged_item(make_coordinator, operation) -> None:
    store = MemoryItemStore(
        [
            Item(text=STALE_TEXT, activated_at=WINDOW - timedelta(days=2), is_current=True),
            Item(text=STAGED_TEXT, is_next=True),
        ],
        latency=STORE_LATENCY,
    )
    generator = CountingGenerator(delay=0.002)
    instances = [make_coordinator(store, generator) for _ in range(INSTANCE_COUNT)]

    results = await asyncio.gather(*(getattr(instance, operation)() for instance in instances))
    await asyncio.gather(*(instance.drain() for instance in instances))

    assert {result.text for result in results} == {STAGED_TEXT}
    _assert_single_holders(store)
    (current,) = [item for item in store.items() if item.holds(ItemFlag.CURRENT)]
    assert current.text == STAGED_TEXT
    assert current.activated_at == WINDOW
    assert len([item for item in store.items() if item.holds(ItemFlag.NEXT)]) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("pregenerate", [True, False])
@pytest.mark.parametrize("operation", ["get_current", "force_rotate"])
async def test_racing_instances_without_staged_item_keep_the_first_replacement(
    make_coordinator, operation, pregenerate
) -> None:
    store = MemoryItemStore(
        [Item(text=STALE_TEXT, activated_at=WINDOW - timedelta(days=1), is_current=True)],
        latency=STORE_LATENCY,
    )
    # Each instance's generation finishes later than the previous one's.
    generator = CountingGenerator(ramp=0.02)
    instances = [make_coordinator(store, generator, pregenerate=pregenerate) for _ in range(4)]

    results = await asyncio.gather(*(getattr(instance, operation)() for instance in instances))
    await asyncio.gather(*(instance.drain() for instance in instances))

    assert len({result.text for result in results}) == 1
    assert not any(result.degraded for result in results)
    records = await store.find_records_for_window(WINDOW)
    assert len(records) == 1
    assert records[0].is_current
    assert records[0].text == results[0].text
    _assert_single_holders(store)
    assert [entry.text for entry in await store.list_history()] == [STALE_TEXT]


@pytest.mark.asyncio
async def test_racing_initializers_agree_on_one_current(make_coordinator) -> None:
    store = MemoryItemStore(latency=STORE_LATENCY)
    generator = CountingGenerator(delay=0.002)
    instances = [make_coordinator(store, generator) for _ in range(INSTANCE_COUNT)]

    snapshots = await asyncio.gather(*(instance.initialize() for instance in instances))

    assert len({snapshot.current.text for snapshot in snapshots}) == 1
    _assert_single_holders(store)
    assert len([item for item in store.items() if item.holds(ItemFlag.CURRENT)]) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [3, 17, 2026])
async def test_random_operation_sequences_keep_one_holder_per_flag(make_coordinator, now, seed) -> None:
    rng = random.Random(seed)
    store = MemoryItemStore(latency=STORE_LATENCY)
    generator = CountingGenerator()
    instances = [make_coordinator(store, generator) for _ in range(4)]
    advances = [timedelta(0), timedelta(hours=6), timedelta(days=1), timedelta(days=3)]
    operations = [
        lambda c: c.get_current(),
        lambda c: c.get_current_and_next(),
        lambda c: c.initialize(),
        lambda c: c.force_rotate(),
        lambda c: c.prepare_next(lead=timedelta(days=1)),
        lambda c: c.list_history(),
    ]

    for _ in range(RANDOM_STEPS):
        now.advance(rng.choice(advances))
        await asyncio.gather(*(rng.choice(operations)(instance) for instance in instances))
        await asyncio.gather(*(instance.drain() for instance in instances))
        _assert_single_holders(store)

        views = [await instance.get_current() for instance in instances]
        assert len({view.text for view in views}) == 1
        assert not any(view.degraded for view in views)
        window = instances[0].clock.current_window_start(now())
        assert all(view.window_start == window for view in views)
