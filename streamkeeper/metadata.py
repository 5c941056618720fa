"""Playback metadata collection through yt-dlp."""

import asyncio
import time
import urllib.parse
from typing import List, Optional, Tuple

import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from .errors import ErrorAnalyzer
from .logger import StreamLogger, quiet_logger
from .models import (
    PRIVATELY_OWNED_PLAYLIST_MARKER,
    ClientProfile,
    Format,
    PlaybackDescriptor,
    PlayabilityStatus,
)
from .ytdlp_options import build_ydl_options, track_url

# Language preference yt-dlp assigns to original and default audio tracks
ORIGINAL_LANGUAGE_PREFERENCE = 5

# Extractor results that point at another URL instead of carrying formats
REDIRECT_RESULT_TYPES = ("url", "url_transparent")

MIME_BY_EXT = {
    "webm": "webm",
    "weba": "webm",
    "m4a": "mp4",
    "mp4": "mp4",
}


def _has_codec(value) -> bool:
    return bool(value) and value != "none"


def _mime_type(entry: dict, is_audio: bool) -> str:
    ext = str(entry.get("ext") or "")
    subtype = MIME_BY_EXT.get(ext, ext or "unknown")
    kind = "audio" if is_audio else "video"
    codec = entry.get("acodec") if is_audio else entry.get("vcodec")
    if _has_codec(codec):
        return f'{kind}/{subtype}; codecs="{codec}"'
    return f"{kind}/{subtype}"


def _is_original_track(entry: dict) -> bool:
    if not entry.get("language"):
        return True
    note = str(entry.get("format_note") or "").lower()
    if "descriptive" in note:
        return False
    if "original" in note:
        return True
    preference = entry.get("language_preference")
    return preference is not None and preference >= ORIGINAL_LANGUAGE_PREFERENCE


def format_from_entry(entry: dict) -> Optional[Format]:
    """Convert a yt-dlp format dict to a Format, or None when it has no id."""
    format_id = entry.get("format_id")
    if format_id is None:
        return None
    is_audio = _has_codec(entry.get("acodec")) and not _has_codec(entry.get("vcodec"))
    bitrate_kbps = entry.get("abr") if is_audio and entry.get("abr") else entry.get("tbr")
    protocol = str(entry.get("protocol") or "https")
    raw_url = entry.get("url") if protocol in ("http", "https") else None
    return Format(
        id=str(format_id),
        mime_type=_mime_type(entry, is_audio),
        bitrate=int(float(bitrate_kbps) * 1000) if bitrate_kbps else 0,
        is_audio=is_audio,
        is_original_track=_is_original_track(entry),
        raw_url=raw_url,
        content_length=entry.get("filesize"),
    )


def expires_in_from_url(url: Optional[str], now: float) -> Optional[int]:
    """Seconds until the `expire` timestamp embedded in a stream URL."""
    if not url:
        return None
    values = urllib.parse.parse_qs(urllib.parse.urlparse(url).query).get("expire")
    if not values:
        return None
    try:
        return max(int(values[0]) - int(now), 0)
    except ValueError:
        return None


def descriptor_from_info(
    info: dict,
    playlist_context: Optional[str] = None,
    now: Optional[float] = None,
) -> PlaybackDescriptor:
    current = time.time() if now is None else now
    is_privately_owned = bool(playlist_context) and PRIVATELY_OWNED_PLAYLIST_MARKER in playlist_context
    if info.get("_type") in REDIRECT_RESULT_TYPES or "formats" not in info:
        return PlaybackDescriptor(
            status=PlayabilityStatus.ERROR,
            is_privately_owned=is_privately_owned,
            reason=f"Extractor returned no formats (result type {info.get('_type') or 'video'})",
        )

    formats = []
    for entry in info.get("formats") or []:
        if not isinstance(entry, dict):
            continue
        fmt = format_from_entry(entry)
        if fmt is not None:
            formats.append(fmt)

    expires_in = None
    for fmt in formats:
        expires_in = expires_in_from_url(fmt.raw_url, current)
        if expires_in is not None:
            break

    return PlaybackDescriptor(
        status=PlayabilityStatus.OK,
        candidate_formats=tuple(formats),
        is_privately_owned=is_privately_owned,
        expires_in_seconds=expires_in,
        urls_deciphered=True,
    )


class YtDlpMetadataClient:
    """Metadata API collaborator that asks yt-dlp for a player response."""

    def __init__(
        self,
        args,
        logger: Optional[StreamLogger] = None,
        error_analyzer: Optional[ErrorAnalyzer] = None,
    ) -> None:
        self.args = args
        self.logger = logger or quiet_logger()
        self.error_analyzer = error_analyzer or ErrorAnalyzer()

    def _extract_info(
        self,
        track_id: str,
        profile: Optional[ClientProfile],
        origin_token: Optional[str] = None,
    ) -> dict:
        ydl_opts = build_ydl_options(self.args, profile, self.logger, origin_token)
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(track_url(track_id), download=False, process=False)
            if isinstance(info, dict) and info.get("_type") in REDIRECT_RESULT_TYPES and info.get("url"):
                self.logger.debug(f"Following {info['_type']} result to {info['url']}")
                info = ydl.extract_info(info["url"], download=False, process=False)
        return info if isinstance(info, dict) else {}

    async def fetch_playback_descriptor(
        self,
        track_id: str,
        playlist_context: Optional[str],
        profile: ClientProfile,
        signature_timestamp: Optional[int] = None,
        origin_token: Optional[str] = None,
    ) -> PlaybackDescriptor:
        if signature_timestamp is not None:
            # yt-dlp derives the timestamp from the player it downloads itself
            self.logger.debug(f"Signature timestamp {signature_timestamp} handled by yt-dlp")
        try:
            info = await asyncio.to_thread(self._extract_info, track_id, profile, origin_token)
        except (DownloadError, ExtractorError) as exc:
            message = str(exc)
            status = self.error_analyzer.categorize_and_record(track_id, message)
            return PlaybackDescriptor(status=status, reason=message)
        return descriptor_from_info(info, playlist_context)


class YtDlpStreamExtractor:
    """Heavier extraction path used when local deobfuscation gives up."""

    def __init__(self, client: YtDlpMetadataClient) -> None:
        self.client = client

    async def _formats(self, track_id: str) -> List[Format]:
        info = await asyncio.to_thread(self.client._extract_info, track_id, None)
        return list(descriptor_from_info(info).candidate_formats)

    async def extract_stream_url(self, fmt: Format, track_id: str) -> Optional[str]:
        for candidate in await self._formats(track_id):
            if candidate.id == fmt.id and candidate.raw_url:
                return candidate.raw_url
        return None

    async def alternate_stream_urls(self, track_id: str) -> List[Tuple[str, str]]:
        """Return (format id, url) pairs from a default-client extraction."""
        return [(fmt.id, fmt.raw_url) for fmt in await self._formats(track_id) if fmt.raw_url]
