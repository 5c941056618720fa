"""Data models, enums, and constants for stream resolution and recovery."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


# Recovery constants
MAX_RETRY_PER_SONG = 3
RETRY_DELAY_SECONDS = 1.0
MAX_CONSECUTIVE_ERR = 5
FAILED_SONGS_CLEAR_DELAY_SECONDS = 5 * 60

# Each auto-skip counts double against the consecutive failure limit
CONSECUTIVE_SKIP_PENALTY = 2

# Format scoring
PREFERRED_CONTAINER_PREFIX = "audio/webm"
PREFERRED_CONTAINER_BONUS = 10240

DEFAULT_VALIDATE_TIMEOUT = 4.0

USER_AGENT_WEB = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Remote track ids are 11-char base64url strings; local catalog ids never match.
REMOTE_TRACK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")

# Playlist ids containing this marker hold user-uploaded (privately owned) tracks.
PRIVATELY_OWNED_PLAYLIST_MARKER = "MLPT"


def is_remote_track_id(track_id: Optional[str]) -> bool:
    """Return True when *track_id* has the shape of a remote track id."""
    return bool(track_id) and bool(REMOTE_TRACK_ID_PATTERN.match(track_id))


class AudioQuality(Enum):
    """User quality policy for format selection."""
    AUTO = "auto"
    HIGH = "high"
    LOW = "low"


class PlayabilityStatus(Enum):
    """Playability status reported by the metadata API."""
    OK = "OK"
    AGE_CHECK_REQUIRED = "AGE_CHECK_REQUIRED"
    AGE_VERIFICATION_REQUIRED = "AGE_VERIFICATION_REQUIRED"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    CONTENT_CHECK_REQUIRED = "CONTENT_CHECK_REQUIRED"
    UNPLAYABLE = "UNPLAYABLE"
    ERROR = "ERROR"


AGE_RESTRICTED_STATUSES = frozenset(
    {
        PlayabilityStatus.AGE_CHECK_REQUIRED,
        PlayabilityStatus.AGE_VERIFICATION_REQUIRED,
        PlayabilityStatus.LOGIN_REQUIRED,
        PlayabilityStatus.CONTENT_CHECK_REQUIRED,
    }
)


@dataclass(frozen=True)
class ClientProfile:
    """A remote-API client identity and its capabilities."""
    name: str
    requires_auth: bool = False
    supports_origin_token: bool = False
    priority: int = 0
    # yt-dlp player client this identity maps onto, when one exists
    ytdlp_client: Optional[str] = None


PRIMARY_PROFILE = ClientProfile(
    "WEB_REMIX", supports_origin_token=True, priority=0, ytdlp_client="web_music"
)
CREATOR_PROFILE = ClientProfile(
    "WEB_CREATOR",
    requires_auth=True,
    supports_origin_token=True,
    priority=11,
    ytdlp_client="web_creator",
)

FALLBACK_PROFILES: Tuple[ClientProfile, ...] = tuple(
    sorted(
        (
            ClientProfile("TVHTML5_SIMPLY_EMBEDDED_PLAYER", requires_auth=True, priority=1, ytdlp_client="tv_simply"),
            ClientProfile("TVHTML5", requires_auth=True, priority=2, ytdlp_client="tv"),
            ClientProfile("ANDROID_VR_1_43_32", priority=3, ytdlp_client="android_vr"),
            ClientProfile("ANDROID_VR_1_61_48", priority=4, ytdlp_client="android_vr"),
            ClientProfile("ANDROID_CREATOR", requires_auth=True, priority=5, ytdlp_client="android"),
            ClientProfile("IPADOS", priority=6, ytdlp_client="ios"),
            ClientProfile("ANDROID_VR_NO_AUTH", priority=7, ytdlp_client="android_vr"),
            ClientProfile("MOBILE", priority=8, ytdlp_client="mweb"),
            ClientProfile("IOS", priority=9, ytdlp_client="ios"),
            ClientProfile("WEB", supports_origin_token=True, priority=10, ytdlp_client="web"),
            CREATOR_PROFILE,
        ),
        key=lambda profile: profile.priority,
    )
)


@dataclass(frozen=True)
class SessionCredentials:
    """Authentication material for the current session."""
    cookie: Optional[str] = None
    data_sync_id: Optional[str] = None
    visitor_data: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.cookie)

    @property
    def session_id(self) -> Optional[str]:
        """Identifier origin tokens are bound to."""
        if self.is_authenticated:
            return self.data_sync_id
        return self.visitor_data


@dataclass(frozen=True)
class Format:
    """A candidate stream format offered by the metadata API."""
    id: str
    mime_type: str
    bitrate: int
    is_audio: bool = True
    is_original_track: bool = True
    raw_url: Optional[str] = None
    obfuscated_descriptor: Optional[str] = None
    content_length: Optional[int] = None


@dataclass(frozen=True)
class PlaybackDescriptor:
    """Metadata API response for one track and one client profile."""
    status: PlayabilityStatus
    candidate_formats: Tuple[Format, ...] = ()
    is_privately_owned: bool = False
    expires_in_seconds: Optional[int] = None
    reason: Optional[str] = None
    # Set when the source already applied the signature and n-parameter transforms
    urls_deciphered: bool = False

    @property
    def is_ok(self) -> bool:
        return self.status is PlayabilityStatus.OK

    @property
    def is_age_restricted(self) -> bool:
        return self.status in AGE_RESTRICTED_STATUSES


@dataclass(frozen=True)
class ResolvedStream:
    """A playable stream URL with its absolute expiry."""
    track_id: str
    url: str
    expires_at: float
    format_id: str
    profile_name: Optional[str] = None
    mime_type: Optional[str] = None
    bitrate: Optional[int] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at


@dataclass(frozen=True)
class CachedFormat:
    """Resolution artifacts persisted per track in the stream cache."""
    format_id: str
    url: str
    expires_at: float
    mime_type: Optional[str] = None
    bitrate: Optional[int] = None
    cached_at: float = field(default_factory=time.time)
    # Selection policy the format was chosen under; None matches any policy
    quality: Optional[AudioQuality] = None
    is_metered: bool = False

    def matches_policy(self, quality: AudioQuality, is_metered: bool) -> bool:
        if self.quality is None:
            return True
        return self.quality is quality and self.is_metered == is_metered


@dataclass
class RetryState:
    """Tracks retry attempts for a single track."""
    attempt_count: int = 0
    last_attempt_at: Optional[float] = None

    def record(self, now: Optional[float] = None) -> int:
        self.attempt_count += 1
        self.last_attempt_at = time.time() if now is None else now
        return self.attempt_count


@dataclass
class ResolutionTrace:
    """Records which profiles a resolution attempt went through."""
    attempted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    accepted: Optional[str] = None
    validated: bool = False
