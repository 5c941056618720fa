"""Health check: resolve a known track and report what happened."""

import asyncio
import time

from .errors import ErrorAnalyzer, RemoteSourceError
from .logger import StreamLogger
from .models import AudioQuality
from .session import build_resolver

HEALTH_CHECK_TRACK_ID = "dQw4w9WgXcQ"


def run_health_check(args, track_id: str = HEALTH_CHECK_TRACK_ID) -> int:
    """Resolve *track_id* once and print a HEALTHY/UNHEALTHY report. Returns an exit code."""

    print("=" * 80)
    print("Stream Resolution Health Check".center(80))
    print("=" * 80)
    print()
    print(f"Resolving track: {track_id}")
    print(f"Using cookie: {'yes' if getattr(args, 'cookie', None) else 'no'}")
    print(f"Using cookies from browser: {getattr(args, 'cookies_from_browser', None) or 'none'}")
    print(f"PO token provider: {getattr(args, 'bgutil_provider_resolved', None) or 'disabled'}")
    print(f"Cipher plan: {getattr(args, 'cipher_plan', None) or 'none'}")
    print()

    logger = StreamLogger(verbose=getattr(args, "verbose", False))
    analyzer = ErrorAnalyzer()

    start_time = time.time()
    try:
        resolver = build_resolver(args, logger, analyzer)
    except RemoteSourceError as exc:
        print(f"✗ Configuration error: {exc}")
        return 1

    result = asyncio.run(
        resolver.resolve(track_id, getattr(args, "playlist", None), AudioQuality.AUTO, False)
    )
    elapsed = time.time() - start_time
    trace = resolver.last_trace

    print()
    print("=" * 80)
    print("Health Check Results".center(80))
    print("=" * 80)

    if trace is not None:
        print(f"Profiles tried: {', '.join(trace.attempted) or 'none'}")
        if trace.skipped:
            print(f"Profiles skipped (need sign-in): {', '.join(trace.skipped)}")

    if result.ok:
        stream = result.stream
        print("✓ Status: HEALTHY")
        print(f"✓ Response time: {elapsed:.2f}s")
        print(f"✓ Resolved format {stream.format_id} via {stream.profile_name}")
        if trace is not None and trace.validated:
            print("✓ Stream URL answered the validation probe")
        else:
            print("ℹ Stream URL accepted without a validation probe")
        if not getattr(args, "cookie", None):
            print("⚠ Not signed in; age-restricted tracks will fail (consider --cookie)")
        print()
        print("Your configuration appears healthy.")
        return 0

    print("✗ Status: UNHEALTHY")
    print(f"✗ Response time: {elapsed:.2f}s")
    print(f"✗ Error: {result.error}")
    if logger.http_403_count > 0:
        print(f"✗ HTTP 403 responses: {logger.http_403_count}")
        print("✗ Likely cause: Rate limiting, expired PO tokens or an IP block")
    if logger.failed_probe_count > 0:
        print(f"✗ Failed validation probes: {logger.failed_probe_count}")

    print()
    print("Recommendations:")
    recommendations = analyzer.get_recommendations() if analyzer.total_errors else [
        "Check your internet connection.",
        "Update yt-dlp and your cipher plan; the player may have changed.",
        "Provide PO tokens (--po-token or a BGUtil provider).",
    ]
    for index, line in enumerate(recommendations, 1):
        print(f"  {index}. {line}")
    return 1
