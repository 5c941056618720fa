"""Configuration and argument parsing for stream resolution."""

import argparse
import json
import os
import re
import sys
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .models import DEFAULT_VALIDATE_TIMEOUT, AudioQuality

ENV_COOKIE = "STREAMKEEPER_COOKIE"
ENV_COOKIES_FROM_BROWSER = "STREAMKEEPER_COOKIES_FROM_BROWSER"
ENV_PO_TOKENS = "STREAMKEEPER_PO_TOKENS"
ENV_VISITOR_DATA = "STREAMKEEPER_VISITOR_DATA"
ENV_DATA_SYNC_ID = "STREAMKEEPER_DATA_SYNC_ID"
ENV_BGUTIL_PROVIDER_MODE = "STREAMKEEPER_BGUTIL_PROVIDER"
ENV_BGUTIL_HTTP_BASE_URL = "STREAMKEEPER_BGUTIL_HTTP_BASE_URL"
ENV_BGUTIL_HTTP_DISABLE_INNERTUBE = "STREAMKEEPER_BGUTIL_HTTP_DISABLE_INNERTUBE"
ENV_BGUTIL_SCRIPT_PATH = "STREAMKEEPER_BGUTIL_SCRIPT_PATH"
ENV_CIPHER_PLAN = "STREAMKEEPER_CIPHER_PLAN"

DEFAULT_BGUTIL_HTTP_BASE_URL = "http://127.0.0.1:4416"
DEFAULT_CONFIG_PATH = "config.json"


class BgUtilProviderMode(Enum):
    AUTO = "auto"
    HTTP = "http"
    SCRIPT = "script"
    DISABLED = "disabled"


BGUTIL_PROVIDER_CHOICES: Tuple[str, ...] = tuple(mode.value for mode in BgUtilProviderMode)
DEFAULT_BGUTIL_PROVIDER_MODE = BgUtilProviderMode.AUTO.value
QUALITY_CHOICES: Tuple[str, ...] = tuple(quality.value for quality in AudioQuality)

CONFIG_KEYS = {
    "playlist", "quality", "metered", "cookie", "cookie_file",
    "cookies_from_browser", "visitor_data", "data_sync_id",
    "cipher_plan", "validate_timeout", "proxy", "verbose",
}


def positive_float(value: str) -> float:
    """Return *value* parsed as a positive number for argparse."""
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected a positive number") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("Expected a positive number")

    return parsed


def load_config_file(config_path: str) -> Dict[str, object]:
    """Load option defaults from a JSON file.

    Missing or unreadable files yield an empty dictionary. Unknown keys are
    reported on stderr and dropped.
    """
    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        print(f"Warning: Failed to parse config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}
    except OSError as exc:
        print(f"Warning: Failed to read config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}

    if not isinstance(config, dict):
        print(f"Warning: Config file {config_path} must contain a JSON object. Ignoring.", file=sys.stderr)
        return {}

    invalid_keys = set(config.keys()) - CONFIG_KEYS
    if invalid_keys:
        print(f"Warning: Unknown config keys ignored: {', '.join(sorted(invalid_keys))}", file=sys.stderr)

    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


def _config_path_from_argv(argv: Sequence[str]) -> str:
    if "--config" in argv:
        index = list(argv).index("--config")
        if index + 1 < len(argv):
            return argv[index + 1]
    return DEFAULT_CONFIG_PATH


def build_parser(config: Optional[Dict[str, object]] = None) -> argparse.ArgumentParser:
    config = config or {}
    parser = argparse.ArgumentParser(
        description="Resolve playable audio stream URLs for remote music tracks using yt-dlp."
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to JSON configuration file (default: config.json)",
    )
    parser.add_argument("track_ids", nargs="*", metavar="TRACK_ID", help="Remote track ids to resolve")
    parser.add_argument(
        "--playlist",
        default=config.get("playlist"),
        help="Playlist id the tracks are played from (ids containing MLPT mark uploaded tracks)",
    )
    parser.add_argument(
        "--quality",
        choices=QUALITY_CHOICES,
        default=config.get("quality", AudioQuality.AUTO.value),
        help="Audio quality policy (default: auto, which prefers low bitrates on metered networks)",
    )
    parser.add_argument(
        "--metered",
        action="store_true",
        default=config.get("metered", False),
        help="Treat the current network as metered",
    )
    parser.add_argument("--cookie", default=config.get("cookie"), help="Cookie header of a signed-in session")
    parser.add_argument(
        "--cookie-file",
        default=config.get("cookie_file"),
        help="Netscape cookie file passed to yt-dlp",
    )
    parser.add_argument(
        "--cookies-from-browser",
        default=config.get("cookies_from_browser"),
        help="Use cookies from your browser (chrome, safari, firefox, edge, etc.)",
    )
    parser.add_argument("--visitor-data", default=config.get("visitor_data"), help="Visitor data of an anonymous session")
    parser.add_argument("--data-sync-id", default=config.get("data_sync_id"), help="Data sync id of a signed-in session")
    parser.add_argument(
        "--po-token",
        action="append",
        default=[],
        metavar="CLIENT.CONTEXT+TOKEN",
        help="Provide a pre-generated PO Token. May be passed multiple times.",
    )
    parser.add_argument(
        "--bgutil-provider",
        choices=BGUTIL_PROVIDER_CHOICES,
        default=None,
        help=(
            "Control how BGUtil PO Token providers are used. "
            "'auto' tries the local HTTP server first, 'http' forces the HTTP provider, "
            "'script' forces the Node.js script provider, and 'disabled' turns the integration off."
        ),
    )
    parser.add_argument(
        "--bgutil-http-base-url",
        default=None,
        help="Override the base URL for the BGUtil HTTP provider. Defaults to http://127.0.0.1:4416.",
    )
    parser.add_argument(
        "--bgutil-http-disable-innertube",
        dest="bgutil_http_disable_innertube",
        action="store_true",
        help="Disable Innertube attestation when requesting PO tokens from the BGUtil HTTP provider.",
    )
    parser.set_defaults(bgutil_http_disable_innertube=None)
    parser.add_argument(
        "--bgutil-script-path",
        default=None,
        help="Path to the BGUtil generate_once.js script when using the script provider.",
    )
    parser.add_argument(
        "--cipher-plan",
        default=config.get("cipher_plan"),
        help="JSON file with the signature and n-parameter transforms for the current player",
    )
    parser.add_argument(
        "--validate-timeout",
        type=positive_float,
        default=config.get("validate_timeout", DEFAULT_VALIDATE_TIMEOUT),
        help="Seconds to wait for a stream URL probe (default: 4)",
    )
    parser.add_argument(
        "--proxy",
        default=config.get("proxy"),
        help="Use a single proxy for all requests (e.g., http://proxy.example.com:8080)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=config.get("verbose", False),
        help="Print debug output, including yt-dlp's",
    )
    parser.add_argument(
        "--health-check",
        action="store_true",
        help="Resolve a known track and report whether resolution works. Does not play anything.",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments, using config file values as defaults."""
    if argv is None:
        argv = sys.argv[1:]

    config_path = _config_path_from_argv(argv)
    config = load_config_file(config_path)
    if config:
        print(f"Loaded configuration from {config_path}")

    return build_parser(config).parse_args(argv)


def _parse_po_token_env(value: str) -> List[str]:
    tokens: List[str] = []
    for part in re.split(r"[\n,]+", value):
        cleaned = part.strip()
        if cleaned:
            tokens.append(cleaned)
    return tokens


def _normalize_env_str(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _env_flag(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _apply_bgutil_provider_defaults(args, environ: Dict[str, str]) -> None:
    provider_value = getattr(args, "bgutil_provider", None)
    if provider_value is None:
        provider_value = _normalize_env_str(environ.get(ENV_BGUTIL_PROVIDER_MODE))
    provider_str = str(provider_value).strip().lower() if provider_value else ""
    if provider_str in BGUTIL_PROVIDER_CHOICES:
        provider_mode = BgUtilProviderMode(provider_str)
    else:
        provider_mode = BgUtilProviderMode.AUTO
    args.bgutil_provider = provider_mode.value

    base_url = getattr(args, "bgutil_http_base_url", None)
    if base_url is None:
        base_url = _normalize_env_str(environ.get(ENV_BGUTIL_HTTP_BASE_URL))
    args.bgutil_http_base_url = str(base_url).strip() if base_url else DEFAULT_BGUTIL_HTTP_BASE_URL

    disable_innertube = getattr(args, "bgutil_http_disable_innertube", None)
    if disable_innertube is None:
        disable_innertube = _env_flag(environ.get(ENV_BGUTIL_HTTP_DISABLE_INNERTUBE))
    args.bgutil_http_disable_innertube = bool(disable_innertube)

    script_path = getattr(args, "bgutil_script_path", None)
    if script_path is None:
        script_path = _normalize_env_str(environ.get(ENV_BGUTIL_SCRIPT_PATH))
    script_path = os.path.expanduser(str(script_path)) if script_path else None
    args.bgutil_script_path = script_path

    script_available = bool(script_path) and os.path.isfile(script_path)
    candidates: List[str] = []
    if provider_mode == BgUtilProviderMode.AUTO:
        candidates.append("http")
        if script_available:
            candidates.append("script")
    elif provider_mode == BgUtilProviderMode.HTTP:
        candidates.append("http")
    elif provider_mode == BgUtilProviderMode.SCRIPT:
        if script_available:
            candidates.append("script")
        else:
            warning = "Configured BGUtil script provider path not found; disabling PO Token script provider."
            if script_path:
                warning += f" Missing file: {script_path}"
            print(warning, file=sys.stderr)

    args.bgutil_provider_candidates = candidates
    args.bgutil_provider_resolved = candidates[0] if candidates else "disabled"


def apply_authentication_defaults(args, environ: Optional[Dict[str, str]] = None) -> None:
    """Populate session and token args from the environment when missing."""
    if environ is None:
        environ = os.environ

    for attr, env_name in (
        ("cookie", ENV_COOKIE),
        ("cookies_from_browser", ENV_COOKIES_FROM_BROWSER),
        ("visitor_data", ENV_VISITOR_DATA),
        ("data_sync_id", ENV_DATA_SYNC_ID),
        ("cipher_plan", ENV_CIPHER_PLAN),
    ):
        if not getattr(args, attr, None):
            setattr(args, attr, _normalize_env_str(environ.get(env_name)))

    env_tokens_raw = environ.get(ENV_PO_TOKENS)
    parsed_tokens = _parse_po_token_env(env_tokens_raw) if env_tokens_raw else []
    existing_tokens = list(getattr(args, "po_token", None) or [])
    seen: Set[str] = set()
    unique_tokens: List[str] = []
    for token in existing_tokens + parsed_tokens:
        if token not in seen:
            seen.add(token)
            unique_tokens.append(token)
    args.po_token = unique_tokens

    _apply_bgutil_provider_defaults(args, environ)
