from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from question_rotation.domain.errors import FlagConflict
from question_rotation.domain.models import Item, ItemFlag
from question_rotation.infrastructure.memory_store import MemoryItemStore
from question_rotation.infrastructure.store import ItemStore

DAY_ONE = datetime(2026, 3, 8, tzinfo=timezone.utc)
DAY_TWO = DAY_ONE + timedelta(days=1)
DAY_THREE = DAY_TWO + timedelta(days=1)


def _past(text: str, window: datetime) -> Item:
    return Item(text=text, activated_at=window)


def test_memory_store_satisfies_protocol() -> None:
    assert isinstance(MemoryItemStore(), ItemStore)


@pytest.mark.asyncio
async def test_second_current_insert_conflicts() -> None:
    store = MemoryItemStore()
    await store.insert(Item(text="Who decides what counts as a mistake?", is_current=True))

    with pytest.raises(FlagConflict) as excinfo:
        await store.insert(Item(text="What do we owe to strangers we never meet?", is_current=True))
    assert excinfo.value.flag == ItemFlag.CURRENT.value
    assert len(store.items()) == 1


@pytest.mark.asyncio
async def test_repeated_insert_of_same_item_is_a_no_op() -> None:
    store = MemoryItemStore()
    item = Item(text="Can a habit ever be truly chosen?", is_next=True)

    await store.insert(item)
    again = await store.insert(item)

    assert again == item
    assert len(store.items()) == 1


@pytest.mark.asyncio
async def test_set_flags_never_overwrites_activated_at() -> None:
    store = MemoryItemStore()
    staged = await store.insert(Item(text="Is curiosity a kind of hunger?", is_next=True))

    promoted = await store.set_flags(staged.id, is_current=True, is_next=False, activated_at=DAY_TWO)
    repeated = await store.set_flags(staged.id, is_current=True, is_next=False, activated_at=DAY_THREE)

    assert promoted is not None and promoted.activated_at == DAY_TWO
    assert repeated is not None and repeated.activated_at == DAY_TWO
    assert await store.find_by_flag(ItemFlag.NEXT) is None


@pytest.mark.asyncio
async def test_set_flags_conflicts_with_another_holder() -> None:
    store = MemoryItemStore()
    await store.insert(Item(text="What are you pretending not to know?", activated_at=DAY_ONE, is_current=True))
    staged = await store.insert(Item(text="Which silence do you trust most?", is_next=True))

    with pytest.raises(FlagConflict):
        await store.set_flags(staged.id, is_current=True, is_next=False, activated_at=DAY_TWO)

    reloaded = await store.find_by_flag(ItemFlag.NEXT)
    assert reloaded is not None and reloaded.id == staged.id


@pytest.mark.asyncio
async def test_set_flags_on_missing_row_returns_none() -> None:
    store = MemoryItemStore()
    assert await store.set_flags(Item(text="Does this row exist at all?").id, is_current=True) is None


@pytest.mark.asyncio
async def test_clear_flag_is_idempotent() -> None:
    store = MemoryItemStore()
    await store.insert(Item(text="When did you last change your mind?", activated_at=DAY_ONE, is_current=True))

    assert await store.clear_flag(ItemFlag.CURRENT) == 1
    assert await store.clear_flag(ItemFlag.CURRENT) == 0
    assert await store.find_by_flag(ItemFlag.CURRENT) is None


@pytest.mark.asyncio
async def test_history_and_used_texts_ordering() -> None:
    store = MemoryItemStore(
        [
            _past("What was the first question ever asked?", DAY_ONE),
            Item(text="What is the question being shown today?", activated_at=DAY_THREE, is_current=True),
            _past("What was the second question ever asked?", DAY_TWO),
            Item(text="What question is waiting for tomorrow?", is_next=True),
        ]
    )

    used = await store.list_used_texts()
    history = await store.list_history()

    assert used == [
        "What was the first question ever asked?",
        "What was the second question ever asked?",
        "What is the question being shown today?",
    ]
    assert [item.text for item in history] == [
        "What was the second question ever asked?",
        "What was the first question ever asked?",
    ]
    assert [item.text for item in await store.list_history(limit=1)] == [
        "What was the second question ever asked?"
    ]


@pytest.mark.asyncio
async def test_find_records_for_window_matches_exact_boundary() -> None:
    store = MemoryItemStore(
        [
            _past("Which window does this belong to?", DAY_ONE),
            _past("Which other window does this belong to?", DAY_TWO),
        ]
    )
    records = await store.find_records_for_window(DAY_TWO)
    assert [item.text for item in records] == ["Which other window does this belong to?"]
    assert await store.find_records_for_window(DAY_THREE) == []


@pytest.mark.asyncio
async def test_clear_flag_before_keeps_a_row_promoted_for_the_window() -> None:
    store = MemoryItemStore()
    promoted = await store.insert(
        Item(text="Which question already belongs to this day?", activated_at=DAY_TWO, is_current=True)
    )

    assert await store.clear_flag(ItemFlag.CURRENT, before=DAY_TWO) == 0
    assert (await store.find_by_flag(ItemFlag.CURRENT)).id == promoted.id

    assert await store.clear_flag(ItemFlag.CURRENT, before=DAY_THREE) == 1
    assert await store.find_by_flag(ItemFlag.CURRENT) is None


@pytest.mark.asyncio
async def test_history_keeps_one_entry_per_window() -> None:
    store = MemoryItemStore(
        [
            Item(text="Which text lost the race for day one?", activated_at=DAY_ONE, created_at=DAY_ONE),
            Item(
                text="Which text won the race for day one?",
                activated_at=DAY_ONE,
                created_at=DAY_ONE + timedelta(seconds=1),
            ),
            _past("Which text was shown on day two?", DAY_TWO),
        ]
    )

    history = await store.list_history()

    assert [item.text for item in history] == [
        "Which text was shown on day two?",
        "Which text won the race for day one?",
    ]
