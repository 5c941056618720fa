#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
resolve_stream.py

Resolve playable audio stream URLs for remote music tracks using yt-dlp.
Supports:
- One or more track ids (resolved in order, through one playback session)
- Playlist context (--playlist), quality policy and metered networks
- Health check mode (--health-check)

Usage:
    python resolve_stream.py dQw4w9WgXcQ
    python resolve_stream.py --quality low --metered dQw4w9WgXcQ
    python resolve_stream.py --health-check
"""

import asyncio
import sys
from datetime import datetime
from typing import List

from streamkeeper import (
    AudioQuality,
    ErrorAnalyzer,
    PlaybackSession,
    RemoteSourceError,
    StreamLogger,
    apply_authentication_defaults,
    build_resolver,
    is_remote_track_id,
    parse_args,
    run_health_check,
)


class ConsolePipeline:
    """Stand-in audio pipeline for the command line: nothing is played."""

    def __init__(self, track_ids: List[str]) -> None:
        self.track_ids = track_ids
        self.index = 0

    def current_track_id(self):
        return self.track_ids[self.index] if self.index < len(self.track_ids) else None

    def current_position(self) -> float:
        return 0.0

    def seek_to(self, position) -> None:
        pass

    def prepare(self) -> None:
        pass

    def play(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def has_next(self) -> bool:
        return self.index + 1 < len(self.track_ids)

    def skip_to_next(self) -> None:
        self.index += 1


async def resolve_tracks(args, logger: StreamLogger, analyzer: ErrorAnalyzer) -> int:
    resolver = build_resolver(args, logger, analyzer)
    quality = AudioQuality(args.quality)
    failures = 0

    async with PlaybackSession(resolver, ConsolePipeline(args.track_ids), logger=logger) as session:
        for track_id in args.track_ids:
            if not is_remote_track_id(track_id):
                print(f"Skipping '{track_id}': not a remote track id", file=sys.stderr)
                failures += 1
                continue

            result = await session.resolve(track_id, args.playlist, quality, args.metered)
            if not result.ok:
                print(f"{track_id}: FAILED ({result.error})", file=sys.stderr)
                failures += 1
                continue

            stream = result.stream
            expires = datetime.fromtimestamp(stream.expires_at).isoformat(timespec="seconds")
            print(f"{track_id}: format={stream.format_id} profile={stream.profile_name} expires={expires}")
            print(f"  {stream.url}")

    return 1 if failures else 0


def main() -> int:
    args = parse_args()
    apply_authentication_defaults(args)

    # Handle health check mode
    if args.health_check:
        return run_health_check(args)

    if not args.track_ids:
        print("Error: You must provide at least one track id", file=sys.stderr)
        return 1

    logger = StreamLogger(verbose=args.verbose)
    analyzer = ErrorAnalyzer()
    try:
        exit_code = asyncio.run(resolve_tracks(args, logger, analyzer))
    except RemoteSourceError as exc:
        print(exc, file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nStopping.")
        return 130

    analyzer.print_summary(file=sys.stderr)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
