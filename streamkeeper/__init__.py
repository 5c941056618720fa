"""Stream resolution and playback recovery package."""

# Import main components for easier access
from .cache import StreamCache
from .cipher import CipherPlan, PlanNTransform, PlanSignatureCipher, load_cipher_plan
from .classifier import ErrorCategory, classify, iter_causes
from .config import apply_authentication_defaults, parse_args, positive_float
from .deobfuscator import UrlDeobfuscator
from .errors import (
    ErrorAnalyzer,
    PlaybackError,
    PlaybackErrorCode,
    RemoteSourceError,
    ResolutionError,
    ResolutionErrorKind,
    ResolutionResult,
)
from .format_selector import select_format
from .health_check import run_health_check
from .logger import StreamLogger
from .metadata import YtDlpMetadataClient, YtDlpStreamExtractor
from .models import (
    CREATOR_PROFILE,
    FALLBACK_PROFILES,
    PRIMARY_PROFILE,
    AudioQuality,
    CachedFormat,
    ClientProfile,
    Format,
    PlayabilityStatus,
    PlaybackDescriptor,
    ResolvedStream,
    SessionCredentials,
    is_remote_track_id,
)
from .recovery import RecoveryAction, RecoveryController
from .resolver import StreamResolver
from .session import PlaybackSession, build_resolver
from .tokens import OriginTokenChain, OriginTokens, SignatureTimestampCache
from .validator import UrlValidator

__all__ = [
    # Main entry points
    "parse_args",
    "apply_authentication_defaults",
    "build_resolver",
    "run_health_check",
    "PlaybackSession",
    # Resolution
    "StreamResolver",
    "UrlDeobfuscator",
    "UrlValidator",
    "select_format",
    "CipherPlan",
    "PlanSignatureCipher",
    "PlanNTransform",
    "load_cipher_plan",
    "OriginTokenChain",
    "OriginTokens",
    "SignatureTimestampCache",
    "YtDlpMetadataClient",
    "YtDlpStreamExtractor",
    "StreamCache",
    # Recovery
    "RecoveryController",
    "RecoveryAction",
    "ErrorCategory",
    "classify",
    "iter_causes",
    # Models and data structures
    "AudioQuality",
    "CachedFormat",
    "ClientProfile",
    "Format",
    "PlayabilityStatus",
    "PlaybackDescriptor",
    "ResolvedStream",
    "SessionCredentials",
    "PRIMARY_PROFILE",
    "FALLBACK_PROFILES",
    "CREATOR_PROFILE",
    "is_remote_track_id",
    # Errors and logging
    "ErrorAnalyzer",
    "PlaybackError",
    "PlaybackErrorCode",
    "RemoteSourceError",
    "ResolutionError",
    "ResolutionErrorKind",
    "ResolutionResult",
    "StreamLogger",
    # Configuration
    "positive_float",
]
