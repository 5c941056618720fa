"""Playback session: the scope that owns resolution and recovery.

The audio pipeline is any object with these methods:

    current_track_id() -> Optional[str]
    current_position() -> float
    seek_to(position)
    prepare()
    play()
    pause()
    has_next() -> bool
    skip_to_next()
"""

import asyncio
from typing import List, Optional, Set

from .cache import StreamCache
from .cipher import PlanSignatureCipher, load_cipher_plan, n_transforms_from_plan
from .deobfuscator import UrlDeobfuscator
from .errors import ErrorAnalyzer, ResolutionResult
from .logger import StreamLogger, quiet_logger
from .metadata import YtDlpMetadataClient, YtDlpStreamExtractor
from .models import DEFAULT_VALIDATE_TIMEOUT, AudioQuality, ResolvedStream, SessionCredentials
from .recovery import RecoveryAction, RecoveryController
from .resolver import StreamResolver
from .tokens import (
    BgUtilHttpTokenProvider,
    BgUtilScriptTokenProvider,
    OriginTokenChain,
    SignatureTimestampCache,
    StaticTokenProvider,
)
from .validator import UrlValidator


def build_token_chain(args, logger: StreamLogger) -> OriginTokenChain:
    providers: List = []
    static_tokens = list(getattr(args, "po_token", None) or [])
    if static_tokens:
        providers.append(StaticTokenProvider(static_tokens))
    for candidate in getattr(args, "bgutil_provider_candidates", None) or []:
        if candidate == "http":
            providers.append(
                BgUtilHttpTokenProvider(
                    args.bgutil_http_base_url,
                    disable_innertube=bool(getattr(args, "bgutil_http_disable_innertube", False)),
                )
            )
        elif candidate == "script":
            providers.append(BgUtilScriptTokenProvider(args.bgutil_script_path))
    return OriginTokenChain(providers, logger)


def build_resolver(
    args,
    logger: Optional[StreamLogger] = None,
    error_analyzer: Optional[ErrorAnalyzer] = None,
) -> StreamResolver:
    """Wire a yt-dlp backed resolver from parsed arguments."""
    logger = logger or quiet_logger()
    plan_path = getattr(args, "cipher_plan", None)
    plan = load_cipher_plan(plan_path) if plan_path else None
    if plan is not None:
        logger.debug(f"Loaded cipher plan {plan.version}")
    n_transform, alternate_n_transform = n_transforms_from_plan(plan)

    metadata_client = YtDlpMetadataClient(args, logger, error_analyzer)
    deobfuscator = UrlDeobfuscator(
        PlanSignatureCipher(plan),
        YtDlpStreamExtractor(metadata_client),
        logger,
    )
    cookie = getattr(args, "cookie", None)
    validator = UrlValidator(
        cookie=cookie,
        timeout=getattr(args, "validate_timeout", None) or DEFAULT_VALIDATE_TIMEOUT,
        proxy=getattr(args, "proxy", None),
        logger=logger,
    )
    credentials = SessionCredentials(
        cookie=cookie,
        data_sync_id=getattr(args, "data_sync_id", None),
        visitor_data=getattr(args, "visitor_data", None),
    )
    return StreamResolver(
        metadata_client,
        deobfuscator,
        validator,
        credentials=credentials,
        token_chain=build_token_chain(args, logger),
        timestamp_cache=SignatureTimestampCache(
            default=plan.signature_timestamp if plan else None, logger=logger
        ),
        n_transform=n_transform,
        alternate_n_transform=alternate_n_transform,
        logger=logger,
    )


class PlaybackSession:
    """Owns the resolver, the stream cache and the recovery controller.

    Closing the session cancels in-flight resolutions and pending
    recovery timers.
    """

    def __init__(
        self,
        resolver: StreamResolver,
        pipeline,
        cache: Optional[StreamCache] = None,
        logger: Optional[StreamLogger] = None,
        **recovery_options,
    ) -> None:
        self.resolver = resolver
        self.pipeline = pipeline
        self.cache = cache or StreamCache(clock=resolver.clock)
        self.logger = logger or quiet_logger()
        self.recovery = RecoveryController(
            pipeline,
            invalidators=(self.cache.invalidate, self.resolver.invalidate),
            logger=self.logger,
            **recovery_options,
        )
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def resolve(
        self,
        track_id: str,
        playlist_context: Optional[str] = None,
        quality: AudioQuality = AudioQuality.AUTO,
        is_metered: bool = False,
    ) -> ResolutionResult:
        if self._closed:
            raise RuntimeError("Playback session is closed")

        cached = self.cache.get(track_id, quality, is_metered)
        if cached is not None:
            self.logger.debug(f"Using cached stream for {track_id}")
            return ResolutionResult.success(
                ResolvedStream(
                    track_id=track_id,
                    url=cached.url,
                    expires_at=cached.expires_at,
                    format_id=cached.format_id,
                    mime_type=cached.mime_type,
                    bitrate=cached.bitrate,
                )
            )

        task = asyncio.get_running_loop().create_task(
            self.resolver.resolve(track_id, playlist_context, quality, is_metered)
        )
        self._tasks.add(task)
        try:
            result = await task
        finally:
            self._tasks.discard(task)

        if result.ok:
            self.cache.put_stream(result.stream, quality, is_metered)
        return result

    def report_playback_error(self, error: BaseException, track_id: Optional[str] = None) -> RecoveryAction:
        if track_id is None:
            track_id = self.pipeline.current_track_id()
        return self.recovery.report_playback_error(track_id, error)

    def on_playback_ready(self, track_id: Optional[str] = None) -> None:
        if track_id is None:
            track_id = self.pipeline.current_track_id()
        self.recovery.on_playback_ready(track_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.recovery.close()

    async def __aenter__(self) -> "PlaybackSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
