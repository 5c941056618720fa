"""In-memory stream URL cache keyed by track id."""

import time
from typing import Callable, Dict, Optional

from .models import AudioQuality, CachedFormat, ResolvedStream


class StreamCache:
    """Remembers the resolved format and URL for each track until it expires.

    Entries record the quality policy they were selected under. A lookup
    that names a different policy misses without evicting the entry.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._entries: Dict[str, CachedFormat] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._entries

    def get(
        self,
        track_id: str,
        quality: Optional[AudioQuality] = None,
        is_metered: bool = False,
    ) -> Optional[CachedFormat]:
        """Return the cached entry, or None when absent, expired or chosen under another policy."""
        entry = self._entries.get(track_id)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            return None
        if quality is not None and not entry.matches_policy(quality, is_metered):
            return None
        return entry

    def put(self, track_id: str, entry: CachedFormat) -> None:
        self._entries[track_id] = entry

    def put_stream(
        self,
        stream: ResolvedStream,
        quality: Optional[AudioQuality] = None,
        is_metered: bool = False,
    ) -> CachedFormat:
        entry = CachedFormat(
            format_id=stream.format_id,
            url=stream.url,
            expires_at=stream.expires_at,
            mime_type=stream.mime_type,
            bitrate=stream.bitrate,
            cached_at=self.clock(),
            quality=quality,
            is_metered=is_metered,
        )
        self.put(stream.track_id, entry)
        return entry

    def invalidate(self, track_id: str) -> None:
        # Absent entries are fine
        self._entries.pop(track_id, None)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [track_id for track_id, entry in self._entries.items() if now >= entry.expires_at]
        for track_id in expired:
            del self._entries[track_id]
        return len(expired)
