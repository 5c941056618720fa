"""yt-dlp options builder for profile-driven extraction."""

from typing import Dict, List, Optional, Tuple

try:
    from yt_dlp.extractor.youtube._base import INNERTUBE_CLIENTS
except ModuleNotFoundError:  # Older yt-dlp releases expose the constant directly.
    from yt_dlp.extractor.youtube import INNERTUBE_CLIENTS

from .logger import StreamLogger
from .models import USER_AGENT_WEB, ClientProfile
from .tokens import PLAYER_CONTEXT

PLAYER_CLIENT_CHOICES: Tuple[str, ...] = tuple(
    sorted(client for client in INNERTUBE_CLIENTS if not client.startswith("_"))
)


def track_url(track_id: str) -> str:
    # A list= parameter routes the URL to the tab extractor, which returns no formats
    return f"https://music.youtube.com/watch?v={track_id}"


def player_client_for(profile: Optional[ClientProfile]) -> Optional[str]:
    """Return the yt-dlp player client for *profile*, if yt-dlp knows it."""
    if profile is None or not profile.ytdlp_client:
        return None
    if profile.ytdlp_client not in PLAYER_CLIENT_CHOICES:
        return None
    return profile.ytdlp_client


def build_ydl_options(
    args,
    profile: Optional[ClientProfile],
    logger: StreamLogger,
    player_token: Optional[str] = None,
) -> dict:
    """Build yt-dlp options for a metadata-only extraction."""
    ydl_opts = {
        "skip_download": True,
        "quiet": True,
        "no_warnings": not getattr(args, "verbose", False),
        "noplaylist": True,
        "retries": 2,
        "logger": logger,
        "http_headers": {"User-Agent": USER_AGENT_WEB},
    }

    proxy = getattr(args, "proxy", None)
    if proxy:
        ydl_opts["proxy"] = proxy
    cookies_from_browser = getattr(args, "cookies_from_browser", None)
    if cookies_from_browser:
        ydl_opts["cookiesfrombrowser"] = (cookies_from_browser,)
    cookie_file = getattr(args, "cookie_file", None)
    if cookie_file:
        ydl_opts["cookiefile"] = cookie_file

    youtube_extractor_args: Dict[str, List[str]] = {}
    player_client = player_client_for(profile)
    if player_client:
        youtube_extractor_args["player_client"] = [player_client]

    po_tokens = list(getattr(args, "po_token", None) or [])
    if player_token and player_client:
        po_tokens.append(f"{player_client}.{PLAYER_CONTEXT}+{player_token}")
    if po_tokens:
        youtube_extractor_args["po_token"] = po_tokens

    if youtube_extractor_args:
        ydl_opts["extractor_args"] = {"youtube": youtube_extractor_args}

    debug_parts = [f"player_client={player_client or 'yt-dlp-default'}"]
    if po_tokens:
        debug_parts.append(f"po_tokens={len(po_tokens)} provided")
    if cookies_from_browser:
        debug_parts.append(f"cookies_from_browser={cookies_from_browser}")
    if proxy:
        debug_parts.append(f"proxy={proxy}")
    logger.debug("Constructed yt-dlp options: " + ", ".join(debug_parts))

    return ydl_opts
