from __future__ import annotations

import asyncio
import dataclasses
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import uuid4

from originx.orchestrator.clock import CLOCK, Clock
from originx.orchestrator.events import (
    STEP_ORDER,
    ConversationStep,
    Interaction,
    TimeContext,
    UserContext,
    normalize_step,
)
from originx.telemetry.logging import get_logger

_MUTABLE_FIELDS = frozenset(f.name for f in dataclasses.fields(UserContext)) - {"user_id"}


class ContextTransaction:
    """Read-modify-write view over one user's context while the per-user lock is held."""

    def __init__(self, store: "UserContextStore", context: UserContext) -> None:
        self._store = store
        self.context = context

    def update(self, **changes: Any) -> UserContext:
        self.context = self._store._apply(self.context, changes)
        return self.context

    def commit(self, revised: UserContext) -> UserContext:
        """Merge only the fields that differ between ``revised`` and the current context."""
        changes = {
            name: getattr(revised, name)
            for name in _MUTABLE_FIELDS
            if getattr(revised, name) != getattr(self.context, name)
        }
        return self.update(**changes) if changes else self.context

    def record_interaction(self, interaction: Interaction) -> UserContext:
        return self.update(recent_interactions=(*self.context.recent_interactions, interaction))


class UserContextStore:
    """Process-lifetime mapping from user id to conversation context.

    Every write for a given user runs under that user's ``asyncio.Lock`` so
    concurrent greeting, text and voice paths apply their updates in order.
    """

    def __init__(
        self,
        clock: Clock = CLOCK,
        initial_step: ConversationStep = "naming-one",
        max_interactions: int = 50,
    ) -> None:
        self._clock = clock
        self._initial_step = normalize_step(initial_step)
        self._max_interactions = max_interactions
        self._contexts: dict[str, UserContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger(__name__)

    def create_user_context(self, user_id: str) -> UserContext:
        """Insert a fresh default context, replacing any existing one."""
        moment = self._clock.local_now()
        context = UserContext(
            user_id=user_id,
            session_id=f"session_{int(moment.timestamp() * 1000)}_{uuid4().hex[:9]}",
            time_context=TimeContext.from_datetime(moment),
            current_step=self._initial_step,
        )
        self._contexts[user_id] = context
        self._logger.info(
            "context.created",
            user_id=user_id,
            session_id=context.session_id,
            step=context.current_step,
            time_of_day=context.time_context.time_of_day,
        )
        return context

    def get_user_context(self, user_id: str) -> UserContext | None:
        return self._contexts.get(user_id)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._contexts

    async def get_or_create(self, user_id: str) -> UserContext:
        async with self._lock(user_id):
            return self._ensure(user_id)

    async def update_user_context(self, user_id: str, **changes: Any) -> UserContext:
        async with self._lock(user_id):
            return self._apply(self._ensure(user_id), changes)

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[ContextTransaction]:
        """Hold the user's lock for a whole turn; nested store writes for the same user would deadlock."""
        async with self._lock(user_id):
            yield ContextTransaction(self, self._ensure(user_id))

    def _lock(self, user_id: str) -> asyncio.Lock:
        # created only on paths that also ensure the context
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _ensure(self, user_id: str) -> UserContext:
        context = self._contexts.get(user_id)
        if context is None:
            context = self.create_user_context(user_id)
        return context

    def _apply(self, context: UserContext, changes: dict[str, Any]) -> UserContext:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown context fields: {sorted(unknown)}")
        updates = dict(changes)

        if "current_step" in updates:
            requested = normalize_step(updates["current_step"])
            if STEP_ORDER[requested] < STEP_ORDER[context.current_step]:
                self._logger.warning(
                    "context.step.regression_ignored",
                    user_id=context.user_id,
                    current=context.current_step,
                    requested=requested,
                )
                updates.pop("current_step")
            else:
                updates["current_step"] = requested

        if "recent_interactions" in updates:
            interactions = tuple(updates["recent_interactions"])
            if self._max_interactions > 0:
                interactions = interactions[-self._max_interactions :]
            updates["recent_interactions"] = interactions

        merged = dataclasses.replace(context, **updates)
        self._contexts[context.user_id] = merged
        if updates:
            self._logger.debug("context.updated", user_id=context.user_id, fields=sorted(updates))
        return merged


__all__ = ["ContextTransaction", "UserContextStore"]
