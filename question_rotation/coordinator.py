"""
Rotation coordinator: decides what the current question is and performs the
current -> next handover once per window boundary.

Usage:
    from question_rotation.coordinator import create_coordinator

    async with await create_coordinator() as coordinator:
        view = await coordinator.get_current()
        print(view.text, view.window_start)

States are derived from the record flags and the clock, never persisted:

- uninitialized: no row holds `is_current`;
- steady: the current row belongs to the present window;
- stale: the current row belongs to a past window (missed boundaries);
- awaiting next: steady, but nothing is staged yet.

Many stateless instances may run this code against one store. Within one
instance a single coordination token collapses concurrent identical work;
across instances the write order (clear current, then promote), the
per-window convergence checks and the store's one-holder constraint make
duplicate rotations harmless.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, NamedTuple, Optional, TypeVar

from question_rotation.clock import Granularity, WindowClock
from question_rotation.config import Settings, get_settings
from question_rotation.domain.errors import (
    CoordinationMiss,
    FlagConflict,
    GenerationInvalid,
    GenerationUnavailable,
    StaleState,
    StoreUnavailable,
)
from question_rotation.domain.models import (
    CurrentView,
    HistoryEntry,
    Item,
    ItemFlag,
    ItemView,
    PreparationResult,
    RotationResult,
    Snapshot,
)
from question_rotation.generation.abstract import CandidateGenerator, clean_candidate
from question_rotation.generation.catalog import LAST_RESORT_TEXT
from question_rotation.generation.fallback import FallbackPool
from question_rotation.generation.openai_generator import OpenAICandidateGenerator
from question_rotation.infrastructure.memory_store import MemoryItemStore
from question_rotation.infrastructure.store import ItemStore, PostgresItemStore
from question_rotation.safeguard import StalenessSafeguard
from question_rotation.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Token:
    key: tuple[str, datetime]
    future: "asyncio.Future[Any]"


class _Rotation(NamedTuple):
    item: Item
    rotated: bool


class RotationCoordinator:
    """
    Serve and rotate the shared question.

    Parameters
    ----------
    store : ItemStore
        Record table; the only state shared between instances.
    generator : CandidateGenerator
        Source of fresh candidates; any failure falls through to `fallback`.
    fallback : FallbackPool
        Pre-written texts, picked deterministically per window by default.
    clock : WindowClock
        Boundary arithmetic in the reference timezone.
    now : callable
        Returns the current instant; injectable for tests and replays.
    avoid_limit : int
        Most recent used texts passed to the generator.
    history_limit : int
        Cap for `list_history()`.
    generation_timeout_seconds : float
        Upper bound on one generator call.
    grace_seconds : float
        How long a finished operation keeps the coordination token, so a
        burst of callers for the same window shares one write sequence.
    pregenerate : bool
        Stage a next item ahead of each boundary. Disabled, every rotation
        synthesizes its item on demand.
    pregenerate_lead : timedelta
        How close to the boundary `prepare_next()` starts staging.
    """

    def __init__(
        self,
        store: ItemStore,
        generator: CandidateGenerator,
        fallback: FallbackPool,
        clock: WindowClock,
        *,
        now: Callable[[], datetime] = _utcnow,
        avoid_limit: int = 20,
        history_limit: int = 100,
        generation_timeout_seconds: float = 5.0,
        grace_seconds: float = 2.0,
        pregenerate: bool = True,
        pregenerate_lead: timedelta = timedelta(minutes=5),
    ) -> None:
        self.store = store
        self.generator = generator
        self.fallback = fallback
        self.clock = clock
        self.safeguard = StalenessSafeguard(clock)
        self._now = now
        self.avoid_limit = avoid_limit
        self.history_limit = history_limit
        self.generation_timeout_seconds = generation_timeout_seconds
        self.grace_seconds = grace_seconds
        self.pregenerate = pregenerate
        self.pregenerate_lead = pregenerate_lead

        self._token: Optional[_Token] = None
        self._staging: Optional["asyncio.Task[None]"] = None
        self._background: set["asyncio.Task[None]"] = set()
        self._last_known_good: Optional[str] = None

    async def __aenter__(self) -> "RotationCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Coordination token
    # ------------------------------------------------------------------

    async def _coordinated(self, key: tuple[str, datetime], operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` unless an identical one is pending or just finished.

        Callers with the same key share the pending (or, within the grace
        period, finished) result. A caller with a different key waits for the
        slot to settle, then takes it.
        """
        while True:
            token = self._token
            if token is None:
                break
            if token.key == key:
                return await asyncio.shield(token.future)
            if token.future.done():
                break
            await asyncio.wait({token.future})

        future = asyncio.ensure_future(operation())
        self._token = _Token(key, future)
        future.add_done_callback(self._schedule_release)
        return await asyncio.shield(future)

    def _schedule_release(self, future: "asyncio.Future[Any]") -> None:
        # Failures are not shared past the callers that were already waiting.
        if future.cancelled() or future.exception() is not None or self.grace_seconds <= 0:
            self._release(future)
            return
        future.get_loop().call_later(self.grace_seconds, self._release, future)

    def _release(self, future: "asyncio.Future[Any]") -> None:
        if self._token is not None and self._token.future is future:
            self._token = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get_current(self) -> CurrentView:
        """Current question for this window, rotating first if the stored one is stale."""
        now = self._now()
        window = self.clock.current_window_start(now)
        try:
            current = await self._current_for(now)
        except StoreUnavailable as exc:
            log.error("[READ] store unavailable, serving fallback", extra={"error": str(exc)})
            return self._degraded_view(window, exc)
        except Exception as exc:  # noqa: BLE001 - callers must always get a question
            log.exception("[READ] unexpected failure, serving fallback")
            return self._degraded_view(window, exc)
        return self._view(current)

    async def get_current_and_next(self) -> Snapshot:
        now = self._now()
        window = self.clock.current_window_start(now)
        try:
            current = await self._current_for(now)
            staged = await self.store.find_by_flag(ItemFlag.NEXT)
        except StoreUnavailable as exc:
            log.error("[READ] store unavailable, serving fallback", extra={"error": str(exc)})
            return Snapshot(current=self._degraded_view(window, exc))
        except Exception as exc:  # noqa: BLE001 - callers must always get a question
            log.exception("[READ] unexpected failure, serving fallback")
            return Snapshot(current=self._degraded_view(window, exc))
        upcoming = None
        if staged is not None:
            upcoming = ItemView(text=staged.text, window_start=self.clock.next_window_start(now))
        return Snapshot(current=self._view(current), next=upcoming)

    async def initialize(self) -> Snapshot:
        """Make sure a current (and, when pre-generating, a next) item exist; return both."""
        window = self.clock.current_window_start(self._now())
        try:
            await self._coordinated(("ensure", window), lambda: self._ensure_exists(window))
        except StoreUnavailable as exc:
            log.error("[ENSURE] store unavailable", extra={"error": str(exc)})
        except Exception:  # noqa: BLE001 - reported through the snapshot below
            log.exception("[ENSURE] unexpected failure")
        return await self.get_current_and_next()

    async def force_rotate(self) -> RotationResult:
        """
        Rotate for the present window without waiting for a stale read.

        Idempotent per boundary: before the boundary it only makes sure the
        next item is staged, at or after it performs the handover once.
        """
        window = self.clock.current_window_start(self._now())
        try:
            rotation = await self._coordinated(("rotate", window), lambda: self._rotate(window))
        except StoreUnavailable as exc:
            log.error("[ROTATION] store unavailable", extra={"error": str(exc)})
            return RotationResult(
                text=self._fallback_text(window), window_start=window, degraded=True, error=str(exc)
            )
        except Exception as exc:  # noqa: BLE001 - schedulers get a result, not a traceback
            log.exception("[ROTATION] unexpected failure")
            return RotationResult(
                text=self._fallback_text(window), window_start=window, degraded=True, error=str(exc)
            )
        self._last_known_good = rotation.item.text
        return RotationResult(
            text=rotation.item.text,
            window_start=self._window_of(rotation.item),
            rotated=rotation.rotated,
        )

    async def list_history(self) -> list[HistoryEntry]:
        """Past questions with their windows, newest first."""
        try:
            items = await self.store.list_history(self.history_limit)
        except StoreUnavailable as exc:
            log.error("[HISTORY] store unavailable", extra={"error": str(exc)})
            return []
        return [HistoryEntry(text=item.text, window_start=self._window_of(item)) for item in items]

    async def prepare_next(self, lead: Optional[timedelta] = None) -> PreparationResult:
        """
        Stage the next item when the boundary is within `lead`.

        Meant for a scheduler tick a few minutes before each boundary; outside
        the lead window it does nothing.
        """
        now = self._now()
        lead = self.pregenerate_lead if lead is None else lead
        upcoming = self.clock.next_window_start(now)
        remaining = self.clock.time_until_next_window(now)
        result = {"next_window_start": upcoming, "seconds_until_boundary": remaining.total_seconds()}

        if not self.pregenerate or remaining > lead:
            return PreparationResult(status="not_needed", **result)
        try:
            staged = await self.store.find_by_flag(ItemFlag.NEXT)
            if staged is not None:
                return PreparationResult(status="already_exists", text=staged.text, **result)
            staged = await self._coordinated(
                ("stage", upcoming), lambda: self._stage_next(upcoming, retries=1)
            )
        except StoreUnavailable as exc:
            log.error("[STAGING] store unavailable", extra={"error": str(exc)})
            return PreparationResult(status="error", error=str(exc), **result)
        log.info(
            "[STAGING] pre-generated next item",
            extra={"window_start": upcoming.isoformat(), "item_id": str(staged.id)},
        )
        return PreparationResult(status="generated", text=staged.text, **result)

    async def drain(self) -> None:
        """Wait for background staging started by earlier rotations."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.store.close()

    # ------------------------------------------------------------------
    # Read path and staleness
    # ------------------------------------------------------------------

    async def _current_for(self, now: datetime) -> Item:
        window = self.clock.current_window_start(now)
        current = await self.store.find_by_flag(ItemFlag.CURRENT)
        if current is None:
            log.info("[ENSURE] no current item", extra={"window_start": window.isoformat()})
            return await self._coordinated(("ensure", window), lambda: self._ensure_exists(window))
        try:
            self.safeguard.assert_fresh(current, now)
        except StaleState as stale:
            log.info(
                "[STALE] current item belongs to a past window",
                extra={
                    "windows_behind": stale.windows_behind,
                    "activated_at": stale.activated_at.isoformat() if stale.activated_at else None,
                    "window_start": window.isoformat(),
                },
            )
            rotation = await self._coordinated(("rotate", window), lambda: self._rotate(window))
            return rotation.item
        return current

    def _window_of(self, item: Item) -> Optional[datetime]:
        return self.clock.window_of(item.activated_at) if item.activated_at else None

    def _view(self, item: Item) -> CurrentView:
        self._last_known_good = item.text
        return CurrentView(text=item.text, window_start=self._window_of(item))

    def _fallback_text(self, window: datetime) -> str:
        if self._last_known_good:
            return self._last_known_good
        try:
            return self.fallback.emergency(window)
        except Exception:  # noqa: BLE001 - the literal is the last line of defence
            log.exception("[FALLBACK] emergency pick failed")
            return LAST_RESORT_TEXT

    def _degraded_view(self, window: datetime, exc: BaseException) -> CurrentView:
        return CurrentView(
            text=self._fallback_text(window), window_start=window, degraded=True, error=str(exc)
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _ensure_exists(self, window: datetime) -> Item:
        current = await self.store.find_by_flag(ItemFlag.CURRENT)
        if current is None:
            winner = await self._window_winner(window)
            if winner is not None:
                current = await self._reflag_current(winner)
            else:
                try:
                    # A staged row without a current one is an interrupted handover.
                    current = await self._handover(window)
                except CoordinationMiss:
                    text = await self._synthesize(window, retries=0)
                    current = await self._insert_or_adopt(
                        Item(text=text, activated_at=window, is_current=True), ItemFlag.CURRENT
                    )
                    log.info(
                        "[ENSURE] created current item",
                        extra={"window_start": window.isoformat(), "item_id": str(current.id)},
                    )
        if self.pregenerate:
            try:
                await self._stage_next(self.clock.next_window_start(window), retries=0)
            except StoreUnavailable as exc:
                log.error("[STAGING] could not stage next item", extra={"error": str(exc)})
        return current

    async def _rotate(self, window: datetime) -> _Rotation:
        current = await self.store.find_by_flag(ItemFlag.CURRENT)
        if current is not None and self.safeguard.is_fresh(current, window):
            log.debug("[ROTATION] already rotated", extra={"window_start": window.isoformat()})
            self._spawn_staging(window)
            return _Rotation(current, False)

        if not self.pregenerate:
            promoted = await self._replace_current(window)
        else:
            try:
                promoted = await self._handover(window)
            except CoordinationMiss as miss:
                log.warning(
                    "[ROTATION] no staged item, synthesizing a replacement",
                    extra={"window_start": miss.window_start.isoformat()},
                )
                promoted = await self._replace_current(window)
        self._spawn_staging(window)
        return _Rotation(promoted, current is None or promoted.id != current.id)

    async def _handover(self, window: datetime) -> Item:
        staged = await self.store.find_by_flag(ItemFlag.NEXT)
        if staged is None:
            raise CoordinationMiss(window)
        # Checked after reading the staged row: if another instance rotated in
        # between, its promotion is already visible here.
        winner = await self._window_winner(window)
        if winner is not None:
            log.info(
                "[ROTATION] window already promoted elsewhere",
                extra={"window_start": window.isoformat(), "item_id": str(winner.id)},
            )
            return winner
        try:
            await self.store.clear_flag(ItemFlag.CURRENT, before=window)
            promoted = await self.store.set_flags(
                staged.id, is_current=True, is_next=False, activated_at=window
            )
        except FlagConflict:
            holder = await self.store.find_by_flag(ItemFlag.CURRENT)
            return holder or staged.promoted(window)
        except StoreUnavailable as exc:
            log.error(
                "[ROTATION] handover write failed, serving unpersisted view",
                extra={"window_start": window.isoformat(), "error": str(exc)},
            )
            return staged.promoted(window)
        log.info(
            "[ROTATION] promoted staged item",
            extra={"window_start": window.isoformat(), "item_id": str(staged.id)},
        )
        return promoted or staged.promoted(window)

    async def _replace_current(self, window: datetime) -> Item:
        winner = await self._window_winner(window)
        if winner is not None:
            return winner
        text = await self._synthesize(window, retries=0)
        # Generation is slow; another instance may have rotated meanwhile.
        winner = await self._window_winner(window)
        if winner is not None:
            log.info(
                "[ROTATION] window already promoted elsewhere",
                extra={"window_start": window.isoformat(), "item_id": str(winner.id)},
            )
            return winner
        item = Item(text=text, activated_at=window, is_current=True)
        try:
            await self.store.clear_flag(ItemFlag.CURRENT, before=window)
        except StoreUnavailable as exc:
            log.error(
                "[ROTATION] could not clear current item, serving unpersisted view",
                extra={"window_start": window.isoformat(), "error": str(exc)},
            )
            return item
        return await self._insert_or_adopt(item, ItemFlag.CURRENT)

    async def _window_winner(self, window: datetime) -> Optional[Item]:
        records = await self.store.find_records_for_window(window)
        if not records:
            return None
        return next((item for item in records if item.is_current), records[-1])

    async def _reflag_current(self, item: Item) -> Item:
        if item.is_current:
            return item
        try:
            updated = await self.store.set_flags(item.id, is_current=True)
        except FlagConflict:
            holder = await self.store.find_by_flag(ItemFlag.CURRENT)
            return holder or item
        except StoreUnavailable as exc:
            log.error("[ENSURE] could not re-flag item", extra={"error": str(exc)})
            return item
        return updated or item

    async def _insert_or_adopt(self, item: Item, flag: ItemFlag) -> Item:
        try:
            return await self.store.insert(item)
        except FlagConflict:
            holder = await self.store.find_by_flag(flag)
            log.info(
                "[RACE] another instance holds the flag, adopting its item",
                extra={"flag": flag.value, "item_id": str(holder.id) if holder else None},
            )
            return holder or item
        except StoreUnavailable as exc:
            log.error(
                "[WRITE] insert failed, serving unpersisted item",
                extra={"flag": flag.value, "error": str(exc)},
            )
            return item

    async def _stage_next(self, target_window: datetime, retries: int = 1) -> Item:
        staged = await self.store.find_by_flag(ItemFlag.NEXT)
        if staged is not None:
            return staged
        text = await self._synthesize(target_window, retries=retries)
        staged = await self._insert_or_adopt(Item(text=text, is_next=True), ItemFlag.NEXT)
        log.info(
            "[STAGING] next item staged",
            extra={"window_start": target_window.isoformat(), "item_id": str(staged.id)},
        )
        return staged

    def _spawn_staging(self, window: datetime) -> None:
        if not self.pregenerate:
            return
        if self._staging is not None and not self._staging.done():
            return
        task = asyncio.create_task(self._stage_in_background(self.clock.next_window_start(window)))
        self._staging = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stage_in_background(self, target_window: datetime) -> None:
        try:
            await self._stage_next(target_window, retries=1)
        except StoreUnavailable as exc:
            log.error("[STAGING] store unavailable", extra={"error": str(exc)})
        except Exception:  # noqa: BLE001 - a background task has no caller to raise to
            log.exception("[STAGING] unexpected failure")

    # ------------------------------------------------------------------
    # Text synthesis
    # ------------------------------------------------------------------

    async def _synthesize(self, window: datetime, retries: int = 0) -> str:
        """
        Generate a text for `window`, or pick one from the fallback pool.

        A generated text already used in history is rejected; it is retried
        up to `retries` more times, then the pool is used.
        """
        try:
            used = await self.store.list_used_texts()
        except StoreUnavailable as exc:
            log.warning("[GENERATION] history unavailable, avoid-list empty", extra={"error": str(exc)})
            used = []
        seen = set(used)
        avoid = used[-self.avoid_limit:] if self.avoid_limit > 0 else []

        for attempt in range(retries + 1):
            try:
                text = clean_candidate(
                    await asyncio.wait_for(
                        self.generator.generate(avoid, window),
                        timeout=self.generation_timeout_seconds,
                    )
                )
            except asyncio.TimeoutError:
                log.info(
                    "[GENERATION] timed out",
                    extra={"generator": self.generator.name, "timeout": self.generation_timeout_seconds},
                )
                break
            except GenerationUnavailable as exc:
                log.info("[GENERATION] unavailable", extra={"generator": self.generator.name, "error": str(exc)})
                break
            except GenerationInvalid as exc:
                log.warning("[GENERATION] invalid output", extra={"generator": self.generator.name, "error": str(exc)})
                break
            except Exception:  # noqa: BLE001 - any generator failure falls through to the pool
                log.exception("[GENERATION] unexpected failure", extra={"generator": self.generator.name})
                break
            if text not in seen:
                return text
            log.info("[GENERATION] duplicate of a used text", extra={"attempt": attempt + 1})

        text = self.fallback.pick(used, window)
        log.info("[FALLBACK] using pool text", extra={"window_start": window.isoformat()})
        return text


# ----------------------------------------------------------------------
# Construction from settings
# ----------------------------------------------------------------------


async def _open_postgres(settings: Settings) -> ItemStore:
    return await PostgresItemStore.connect(settings)


async def _open_memory(settings: Settings) -> ItemStore:
    del settings
    return MemoryItemStore()


def _store_factories() -> dict[str, Callable[[Settings], Awaitable[ItemStore]]]:
    """Registry of available store backends."""
    return {
        "postgres": _open_postgres,
        "memory": _open_memory,
    }


def available_backends() -> list[str]:
    """List available store backend names."""
    return sorted(_store_factories().keys())


def build_clock(settings: Settings) -> WindowClock:
    return WindowClock(
        timezone=settings.reference_timezone,
        granularity=Granularity(settings.rotation_granularity),
    )


async def create_coordinator(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ItemStore] = None,
    generator: Optional[CandidateGenerator] = None,
    now: Callable[[], datetime] = _utcnow,
) -> RotationCoordinator:
    """
    Build a coordinator from settings, opening the configured store backend.

    Raises
    ------
    ValueError
        If `settings.store_backend` names an unknown backend.
    StoreUnavailable
        If the PostgreSQL pool cannot be opened.
    """
    settings = settings or get_settings()
    clock = build_clock(settings)
    if store is None:
        factories = _store_factories()
        if settings.store_backend not in factories:
            raise ValueError(
                f"Unknown store backend '{settings.store_backend}'. Available: {', '.join(factories)}"
            )
        store = await factories[settings.store_backend](settings)
    if generator is None:
        generator = OpenAICandidateGenerator(
            settings.openai_api_key,
            clock,
            model=settings.openai_model,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
            timeout_seconds=settings.generation_timeout_seconds,
            avoid_limit=settings.avoid_list_limit,
            deterministic_seed=settings.generation_deterministic_seed,
        )
    log.debug(
        "[COORDINATOR] created",
        extra={"store": store.name, "generator": generator.name, "granularity": clock.granularity.value},
    )
    return RotationCoordinator(
        store,
        generator,
        FallbackPool(),
        clock,
        now=now,
        avoid_limit=settings.avoid_list_limit,
        history_limit=settings.history_limit,
        generation_timeout_seconds=settings.generation_timeout_seconds,
        grace_seconds=settings.coordination_grace_seconds,
        pregenerate=settings.pregenerate_enabled,
        pregenerate_lead=timedelta(minutes=settings.pregenerate_lead_minutes),
    )


__all__ = [
    "RotationCoordinator",
    "available_backends",
    "build_clock",
    "create_coordinator",
]
