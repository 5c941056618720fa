"""Bounded retry and circuit breaking for playback failures."""

import asyncio
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Set

from .classifier import ErrorCategory, classify
from .logger import StreamLogger, quiet_logger
from .models import (
    CONSECUTIVE_SKIP_PENALTY,
    FAILED_SONGS_CLEAR_DELAY_SECONDS,
    MAX_CONSECUTIVE_ERR,
    MAX_RETRY_PER_SONG,
    RETRY_DELAY_SECONDS,
    RetryState,
    is_remote_track_id,
)


class RecoveryAction(Enum):
    """What the controller decided to do about a reported error."""
    NONE = "none"
    RETRY_IN_PLACE = "retry_in_place"
    RESTART = "restart"
    SKIP_TO_NEXT = "skip_to_next"
    PAUSE = "pause"


# Delay multiplier (in retry delay units) per category
DELAY_UNITS: Dict[ErrorCategory, int] = {
    ErrorCategory.EXPIRED_URL: 1,
    ErrorCategory.RANGE_NOT_SATISFIABLE: 1,
    ErrorCategory.RATE_LIMITED: 2,
    ErrorCategory.NETWORK_FAILURE: 3,
    ErrorCategory.GENERIC: 1,
}


class RecoveryController:
    """Per-session retry bookkeeping and the skip/pause circuit breaker.

    All state lives on this instance and is only touched from the event
    loop the session runs on. At most one retry task is pending: a new
    dispatch cancels the previous one.
    """

    def __init__(
        self,
        pipeline,
        invalidators: Iterable[Callable[[str], None]] = (),
        logger: Optional[StreamLogger] = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
        failed_clear_delay: float = FAILED_SONGS_CLEAR_DELAY_SECONDS,
        max_retries: int = MAX_RETRY_PER_SONG,
        max_consecutive: int = MAX_CONSECUTIVE_ERR,
        classifier: Callable[[BaseException], ErrorCategory] = classify,
    ) -> None:
        self.pipeline = pipeline
        self.invalidators = list(invalidators)
        self.logger = logger or quiet_logger()
        self.retry_delay = retry_delay
        self.failed_clear_delay = failed_clear_delay
        self.max_retries = max_retries
        self.max_consecutive = max_consecutive
        self.classifier = classifier

        self.retry_states: Dict[str, RetryState] = {}
        self.failed_tracks: Set[str] = set()
        self.consecutive_failures = 0
        self.last_category: Optional[ErrorCategory] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._clear_task: Optional[asyncio.Task] = None
        self._closed = False

    def attempt_count(self, track_id: str) -> int:
        state = self.retry_states.get(track_id)
        return state.attempt_count if state else 0

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def report_playback_error(self, track_id: Optional[str], error: BaseException) -> RecoveryAction:
        """Decide and schedule recovery for an error on the playing track.

        Must be called from the running event loop.
        """
        if self._closed:
            return RecoveryAction.NONE
        if not is_remote_track_id(track_id):
            self.logger.warning(f"Playback error for non-remote track {track_id!r}, not recovering: {error}")
            return RecoveryAction.NONE

        self.logger.set_track(track_id)
        if track_id in self.failed_tracks or self.attempt_count(track_id) >= self.max_retries:
            self.logger.warning("Retry limit reached, marking track as failed")
            self._mark_failed(track_id)
            return self._skip_or_pause()

        self._invalidate(track_id)

        category = self.classifier(error)
        self.last_category = category
        attempt = self.retry_states.setdefault(track_id, RetryState()).record()
        delay = self.retry_delay * DELAY_UNITS[category]
        restart = category is ErrorCategory.RANGE_NOT_SATISFIABLE
        self.logger.info(
            f"{category.value} error, retry {attempt}/{self.max_retries} in {delay:g}s"
            + (" from the start" if restart else "")
        )
        self._schedule_retry(delay, restart)
        return RecoveryAction.RESTART if restart else RecoveryAction.RETRY_IN_PLACE

    def on_playback_ready(self, track_id: Optional[str]) -> None:
        """Reset recovery state once playback has started successfully."""
        self.consecutive_failures = 0
        self._cancel_retry()
        if track_id:
            self.retry_states.pop(track_id, None)
            self.failed_tracks.discard(track_id)

    def _invalidate(self, track_id: str) -> None:
        for invalidate in self.invalidators:
            try:
                invalidate(track_id)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(f"Cache invalidation failed: {exc}")

    def _mark_failed(self, track_id: str) -> None:
        self.failed_tracks.add(track_id)
        self.retry_states.pop(track_id, None)
        if self._clear_task is not None:
            self._clear_task.cancel()
        self._clear_task = asyncio.get_running_loop().create_task(self._clear_failed_later())

    async def _clear_failed_later(self) -> None:
        await asyncio.sleep(self.failed_clear_delay)
        self.logger.debug(f"Clearing {len(self.failed_tracks)} failed tracks")
        self.failed_tracks.clear()

    def _skip_or_pause(self) -> RecoveryAction:
        self._cancel_retry()
        self.consecutive_failures += CONSECUTIVE_SKIP_PENALTY
        if self.consecutive_failures <= self.max_consecutive and self.pipeline.has_next():
            self.logger.info(f"Skipping to next track (consecutive errors: {self.consecutive_failures})")
            self.pipeline.skip_to_next()
            self.pipeline.prepare()
            self.pipeline.play()
            return RecoveryAction.SKIP_TO_NEXT

        self.logger.warning(f"Too many consecutive errors ({self.consecutive_failures}), pausing playback")
        self.pipeline.pause()
        self.consecutive_failures = 0
        return RecoveryAction.PAUSE

    def _cancel_retry(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None

    def _schedule_retry(self, delay: float, restart: bool) -> None:
        self._cancel_retry()
        self._retry_task = asyncio.get_running_loop().create_task(self._resume_after(delay, restart))

    async def _resume_after(self, delay: float, restart: bool) -> None:
        await asyncio.sleep(delay)
        try:
            position = 0 if restart else self.pipeline.current_position()
            # Seeking makes the pipeline resolve the track again
            self.pipeline.seek_to(position)
            self.pipeline.prepare()
            self.pipeline.play()
        except Exception as exc:  # noqa: BLE001
            self.logger.record_exception(exc, "Retry failed: ")

    async def close(self) -> None:
        """Cancel pending timers. Safe to call more than once."""
        self._closed = True
        tasks = [task for task in (self._retry_task, self._clear_task) if task is not None]
        self._retry_task = None
        self._clear_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
