from __future__ import annotations

import asyncio
import dataclasses

import pytest

from originx.orchestrator.context_store import UserContextStore
from originx.orchestrator.events import Interaction, Preferences


@pytest.mark.anyio("asyncio")
async def test_get_or_create_is_idempotent(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    first = await store.get_or_create("u1")
    second = await store.get_or_create("u1")
    assert first is second
    assert first.current_step == "naming-one"
    assert first.time_context.time_of_day == "evening"
    assert first.time_context.day_of_week == "Friday"
    assert first.session_id.startswith("session_")
    assert len(first.session_id.rsplit("_", 1)[-1]) == 9


@pytest.mark.anyio("asyncio")
async def test_locks_exist_only_for_stored_users(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    assert store.get_user_context("ghost") is None
    await store.get_or_create("u1")
    async with store.transaction("u2"):
        pass
    assert "ghost" not in store
    assert set(store._locks) == {"u1", "u2"}


def test_create_user_context_replaces_existing(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock, initial_step="landing")
    original = store.create_user_context("u1")
    assert original.current_step == "landing"
    replaced = store.create_user_context("u1")
    assert replaced is store.get_user_context("u1")
    assert "u1" in store
    assert "ghost" not in store
    assert store.get_user_context("ghost") is None


@pytest.mark.anyio("asyncio")
async def test_update_merges_instead_of_overwriting(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    await store.update_user_context("u1", one_name="Nova")
    updated = await store.update_user_context("u1", name="Sam")
    assert updated.one_name == "Nova"
    assert updated.name == "Sam"
    assert updated.preferences == Preferences()


@pytest.mark.anyio("asyncio")
async def test_update_creates_missing_context(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    updated = await store.update_user_context("fresh", name="Kai")
    assert updated.name == "Kai"
    assert updated.current_step == "naming-one"


@pytest.mark.anyio("asyncio")
async def test_step_never_moves_backwards(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    await store.update_user_context("u1", current_step="scenario")
    regressed = await store.update_user_context("u1", current_step="naming-user", name="Ada")
    assert regressed.current_step == "scenario"
    assert regressed.name == "Ada"


@pytest.mark.anyio("asyncio")
async def test_completed_is_normalised_to_scenario(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    updated = await store.update_user_context("u1", current_step="completed")
    assert updated.current_step == "scenario"


@pytest.mark.anyio("asyncio")
async def test_unknown_field_is_rejected(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    with pytest.raises(ValueError):
        await store.update_user_context("u1", favourite_colour="teal")
    with pytest.raises(ValueError):
        await store.update_user_context("u1", user_id="someone-else")


@pytest.mark.anyio("asyncio")
async def test_recent_interactions_are_bounded(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock, max_interactions=3)
    async with store.transaction("u1") as txn:
        for index in range(5):
            txn.record_interaction(
                Interaction(ts=evening_clock.now(), user_input=f"q{index}", response="a", step="scenario")
            )
    context = store.get_user_context("u1")
    assert [item.user_input for item in context.recent_interactions] == ["q2", "q3", "q4"]


@pytest.mark.anyio("asyncio")
async def test_concurrent_read_modify_write_keeps_every_update(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock, max_interactions=0)

    async def append(index: int) -> None:
        async with store.transaction("u1") as txn:
            current = txn.context.recent_interactions
            await asyncio.sleep(0)
            txn.update(
                recent_interactions=(
                    *current,
                    Interaction(ts=evening_clock.now(), user_input=str(index), response="", step="naming-one"),
                )
            )

    await asyncio.gather(*(append(index) for index in range(20)))
    context = store.get_user_context("u1")
    assert sorted(int(item.user_input) for item in context.recent_interactions) == list(range(20))


@pytest.mark.anyio("asyncio")
async def test_commit_merges_revised_context_through_the_step_guard(evening_clock) -> None:
    store = UserContextStore(clock=evening_clock)
    async with store.transaction("u1") as txn:
        revised = dataclasses.replace(txn.context, one_name="Nova", current_step="landing")
        committed = txn.commit(revised)
    assert committed.one_name == "Nova"
    assert committed.current_step == "naming-one"
    assert store.get_user_context("u1") is committed
