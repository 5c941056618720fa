"""Error taxonomy and remote failure analysis for stream resolution."""

import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .models import PlayabilityStatus, ResolvedStream


class ResolutionErrorKind(Enum):
    """Stage at which a resolution attempt gave up."""
    BAD_STATUS = "BadStatus"
    NO_FORMAT = "NoFormat"
    NO_URL = "NoUrl"
    MISSING_EXPIRY = "MissingExpiry"


@dataclass(frozen=True)
class ResolutionError:
    """Returned to the caller when no profile produced a usable stream."""
    kind: ResolutionErrorKind
    reason: Optional[str] = None

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value}: {self.reason}"
        return self.kind.value


@dataclass(frozen=True)
class ResolutionResult:
    """Either a resolved stream or the error that ended resolution."""
    stream: Optional[ResolvedStream] = None
    error: Optional[ResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.stream is not None

    @classmethod
    def success(cls, stream: ResolvedStream) -> "ResolutionResult":
        return cls(stream=stream)

    @classmethod
    def failure(cls, kind: ResolutionErrorKind, reason: Optional[str] = None) -> "ResolutionResult":
        return cls(error=ResolutionError(kind, reason))


class PlaybackErrorCode(Enum):
    """Transport-level failure codes reported by the audio pipeline."""
    UNSPECIFIED = "unspecified"
    BAD_HTTP_STATUS = "bad_http_status"
    NETWORK_CONNECTION_FAILED = "network_connection_failed"
    NETWORK_CONNECTION_TIMEOUT = "network_connection_timeout"


class PlaybackError(Exception):
    """Raised by the audio pipeline when a stream fails during playback."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: PlaybackErrorCode = PlaybackErrorCode.UNSPECIFIED,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        if status_code is not None and error_code is PlaybackErrorCode.UNSPECIFIED:
            self.error_code = PlaybackErrorCode.BAD_HTTP_STATUS


class RemoteSourceError(Exception):
    """Raised when an external input (plan file, token provider) cannot be used."""


@dataclass
class ErrorPattern:
    """Occurrences of one playability category."""
    status: PlayabilityStatus
    count: int = 0
    track_ids: List[str] = field(default_factory=list)
    sample_messages: List[str] = field(default_factory=list)

    def record(self, track_id: Optional[str], message: str) -> None:
        self.count += 1
        if track_id and track_id not in self.track_ids:
            self.track_ids.append(track_id)
        if len(self.sample_messages) < 5 and message not in self.sample_messages:
            self.sample_messages.append(message)


class ErrorAnalyzer:
    """Maps remote failure messages to playability statuses and tracks them."""

    # Order matters - more specific first
    STATUS_FRAGMENTS = (
        (PlayabilityStatus.AGE_VERIFICATION_REQUIRED, ("confirm your age", "age-restricted", "age restricted")),
        (PlayabilityStatus.CONTENT_CHECK_REQUIRED, ("inappropriate", "content check", "viewer discretion")),
        (
            PlayabilityStatus.LOGIN_REQUIRED,
            ("not a bot", "login required", "sign in", "members only", "members-only", "requires purchase"),
        ),
        (
            PlayabilityStatus.UNPLAYABLE,
            ("video unavailable", "is unavailable", "content isn't available", "private video", "has been removed"),
        ),
    )

    def __init__(self) -> None:
        self.patterns: Dict[PlayabilityStatus, ErrorPattern] = {
            status: ErrorPattern(status) for status in PlayabilityStatus if status is not PlayabilityStatus.OK
        }
        self.total_errors = 0

    @classmethod
    def status_for_message(cls, message: str) -> PlayabilityStatus:
        lowered = message.lower()
        for status, fragments in cls.STATUS_FRAGMENTS:
            if any(fragment in lowered for fragment in fragments):
                return status
        return PlayabilityStatus.ERROR

    def categorize_and_record(self, track_id: Optional[str], message: str) -> PlayabilityStatus:
        """Categorize a remote failure and record it. Returns the status."""
        self.total_errors += 1
        status = self.status_for_message(message)
        self.patterns[status].record(track_id, message)
        return status

    def get_recommendations(self) -> List[str]:
        if self.total_errors == 0:
            return ["No remote errors recorded."]

        recommendations = []
        age = (
            self.patterns[PlayabilityStatus.AGE_VERIFICATION_REQUIRED].count
            + self.patterns[PlayabilityStatus.AGE_CHECK_REQUIRED].count
        )
        if age:
            recommendations.append(
                f"Age-restricted ({age} responses): provide a signed-in cookie "
                "(--cookie or STREAMKEEPER_COOKIE) so the creator profile can be tried."
            )
        login = self.patterns[PlayabilityStatus.LOGIN_REQUIRED].count
        if login:
            recommendations.append(
                f"Login required ({login} responses): refresh your cookie and PO tokens. "
                "Check that the BGUtil provider is reachable."
            )
        content = self.patterns[PlayabilityStatus.CONTENT_CHECK_REQUIRED].count
        if content:
            recommendations.append(
                f"Content check ({content} responses): these tracks need an authenticated session."
            )
        unplayable = self.patterns[PlayabilityStatus.UNPLAYABLE].count
        if unplayable:
            recommendations.append(
                f"Unplayable ({unplayable} responses): the track is private, removed or blocked in your region."
            )
        other = self.patterns[PlayabilityStatus.ERROR].count
        if other:
            recommendations.append(
                f"Other errors ({other}): rerun with --verbose to see the extractor output."
            )
        return recommendations

    def print_summary(self, file=sys.stdout) -> None:
        if self.total_errors == 0:
            return
        print("=" * 70, file=file)
        print(f"Remote errors: {self.total_errors}", file=file)
        for status, pattern in sorted(self.patterns.items(), key=lambda item: item[1].count, reverse=True):
            if pattern.count:
                print(f"  {status.value}: {pattern.count} ({len(pattern.track_ids)} tracks)", file=file)
        print("=" * 70, file=file)
        for line in self.get_recommendations():
            print(line, file=file)
