import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from streamkeeper.errors import PlaybackError, ResolutionErrorKind, ResolutionResult
from streamkeeper.models import AudioQuality, ResolvedStream
from streamkeeper.recovery import RecoveryAction
from streamkeeper.session import PlaybackSession

TRACK_ID = "abc12345678"
NOW = 1_700_000_000.0


class FakeResolver:
    def __init__(self, result=None, delay=0.0):
        self.clock = lambda: NOW
        self.result = result or ResolutionResult.success(
            ResolvedStream(
                track_id=TRACK_ID,
                url="https://media.example/v",
                expires_at=NOW + 600,
                format_id="251",
                profile_name="WEB_REMIX",
                mime_type="audio/webm",
                bitrate=160000,
            )
        )
        self.delay = delay
        self.calls = []
        self.invalidated = []

    async def resolve(self, track_id, playlist_context=None, quality=None, is_metered=False):
        self.calls.append(track_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result

    def invalidate(self, track_id):
        self.invalidated.append(track_id)


class FakePipeline:
    def __init__(self):
        self.calls = []

    def current_track_id(self):
        return TRACK_ID

    def current_position(self):
        return 12.0

    def seek_to(self, position):
        self.calls.append(("seek_to", position))

    def prepare(self):
        self.calls.append(("prepare",))

    def play(self):
        self.calls.append(("play",))

    def pause(self):
        self.calls.append(("pause",))

    def has_next(self):
        return False

    def skip_to_next(self):
        self.calls.append(("skip_to_next",))


def test_resolve_caches_successful_stream():
    resolver = FakeResolver()

    async def scenario():
        async with PlaybackSession(resolver, FakePipeline()) as session:
            first = await session.resolve(TRACK_ID)
            second = await session.resolve(TRACK_ID)
            return session, first, second

    session, first, second = asyncio.run(scenario())

    assert resolver.calls == [TRACK_ID]
    assert first.ok and second.ok
    assert second.stream.url == first.stream.url
    assert second.stream.mime_type == "audio/webm"
    assert second.stream.expires_at == NOW + 600
    assert TRACK_ID in session.cache


def test_cached_stream_is_reused_only_for_the_same_quality_policy():
    resolver = FakeResolver()

    async def scenario():
        async with PlaybackSession(resolver, FakePipeline()) as session:
            await session.resolve(TRACK_ID, quality=AudioQuality.HIGH)
            await session.resolve(TRACK_ID, quality=AudioQuality.LOW)
            await session.resolve(TRACK_ID, quality=AudioQuality.LOW, is_metered=True)
            await session.resolve(TRACK_ID, quality=AudioQuality.LOW, is_metered=True)
            return session

    session = asyncio.run(scenario())

    assert resolver.calls == [TRACK_ID, TRACK_ID, TRACK_ID]
    entry = session.cache.get(TRACK_ID)
    assert entry.quality is AudioQuality.LOW
    assert entry.is_metered is True
    assert session.cache.get(TRACK_ID, AudioQuality.HIGH) is None


def test_failed_resolution_is_not_cached():
    resolver = FakeResolver(
        result=ResolutionResult.failure(ResolutionErrorKind.NO_FORMAT, "No suitable format")
    )

    async def scenario():
        async with PlaybackSession(resolver, FakePipeline()) as session:
            await session.resolve(TRACK_ID)
            result = await session.resolve(TRACK_ID)
            return session, result

    session, result = asyncio.run(scenario())

    assert not result.ok
    assert result.error.kind is ResolutionErrorKind.NO_FORMAT
    assert len(session.cache) == 0
    assert resolver.calls == [TRACK_ID, TRACK_ID]


def test_playback_error_invalidates_cache_and_resolver():
    resolver = FakeResolver()

    async def scenario():
        async with PlaybackSession(resolver, FakePipeline(), retry_delay=10.0) as session:
            await session.resolve(TRACK_ID)
            action = session.report_playback_error(PlaybackError("expired", status_code=403))
            return session, action

    session, action = asyncio.run(scenario())

    assert action is RecoveryAction.RETRY_IN_PLACE
    assert TRACK_ID not in session.cache
    assert resolver.invalidated == [TRACK_ID]


def test_playback_ready_resets_recovery():
    async def scenario():
        async with PlaybackSession(FakeResolver(), FakePipeline(), retry_delay=10.0) as session:
            session.report_playback_error(PlaybackError("expired", status_code=403))
            session.on_playback_ready()
            return session

    session = asyncio.run(scenario())

    assert session.recovery.attempt_count(TRACK_ID) == 0
    assert session.recovery.retry_pending is False


def test_close_cancels_in_flight_resolution():
    resolver = FakeResolver(delay=10.0)

    async def scenario():
        session = PlaybackSession(resolver, FakePipeline())
        pending = asyncio.ensure_future(session.resolve(TRACK_ID))
        await asyncio.sleep(0.01)
        await session.close()
        with pytest.raises(asyncio.CancelledError):
            await pending
        return session

    session = asyncio.run(scenario())

    assert len(session.cache) == 0


def test_resolve_after_close_raises():
    async def scenario():
        session = PlaybackSession(FakeResolver(), FakePipeline())
        await session.close()
        await session.close()
        with pytest.raises(RuntimeError):
            await session.resolve(TRACK_ID)

    asyncio.run(scenario())
