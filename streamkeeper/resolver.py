"""Client profile fallback that turns a track id into a playable stream."""

import asyncio
import time
from typing import Callable, List, Optional, Sequence, Tuple

from .cipher import PlanNTransform
from .deobfuscator import UrlDeobfuscator
from .errors import ResolutionErrorKind, ResolutionResult
from .format_selector import select_format
from .logger import StreamLogger, quiet_logger
from .models import (
    CREATOR_PROFILE,
    FALLBACK_PROFILES,
    PRIMARY_PROFILE,
    AudioQuality,
    ClientProfile,
    PlaybackDescriptor,
    ResolutionTrace,
    ResolvedStream,
    SessionCredentials,
)
from .tokens import OriginTokenChain, OriginTokens, SignatureTimestampCache
from .validator import UrlValidator

# Pseudo-index meaning "reuse the response already fetched for the primary profile"
PRIMARY_INDEX = -1


def append_streaming_token(url: str, token: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}pot={token}"


class StreamResolver:
    """Resolves track ids by walking the primary and fallback client profiles.

    The primary profile is asked first. When it reports an age or login gate
    and the session is signed in, the creator profile gets one attempt and
    replaces the primary response if it comes back OK. The fallback list is
    then scanned strictly in order:

    - privately owned tracks start at index 1,
    - responses that are still age restricted start at index 0,
    - anything else starts by reusing the primary response.

    A candidate URL is accepted without a probe only on the final entry of
    the fallback list or for privately owned tracks. When the final entry
    is skipped for missing credentials, no candidate is exempt. Every other
    candidate must pass the validator, with one retry through the alternate
    n-transform for token capable profiles.
    """

    def __init__(
        self,
        metadata_client,
        deobfuscator: UrlDeobfuscator,
        validator: UrlValidator,
        credentials: Optional[SessionCredentials] = None,
        token_chain: Optional[OriginTokenChain] = None,
        timestamp_cache: Optional[SignatureTimestampCache] = None,
        n_transform: Optional[PlanNTransform] = None,
        alternate_n_transform: Optional[PlanNTransform] = None,
        primary: ClientProfile = PRIMARY_PROFILE,
        fallbacks: Sequence[ClientProfile] = FALLBACK_PROFILES,
        creator: ClientProfile = CREATOR_PROFILE,
        clock: Callable[[], float] = time.time,
        logger: Optional[StreamLogger] = None,
    ) -> None:
        self.metadata_client = metadata_client
        self.deobfuscator = deobfuscator
        self.validator = validator
        self.credentials = credentials or SessionCredentials()
        self.token_chain = token_chain or OriginTokenChain()
        self.timestamp_cache = timestamp_cache or SignatureTimestampCache()
        self.n_transform = n_transform
        self.alternate_n_transform = alternate_n_transform
        self.primary = primary
        self.fallbacks: Tuple[ClientProfile, ...] = tuple(fallbacks)
        self.creator = creator
        self.clock = clock
        self.logger = logger or quiet_logger()
        self.last_trace: Optional[ResolutionTrace] = None

    def invalidate(self, track_id: str) -> None:
        """Force a fresh signature timestamp on the next resolution of *track_id*."""
        self.timestamp_cache.invalidate(track_id)

    async def _origin_tokens(self, track_id: str) -> Optional[OriginTokens]:
        session_id = self.credentials.session_id
        if not self.primary.supports_origin_token or not session_id:
            return None
        return await self.token_chain.get_tokens(track_id, session_id, self.primary)

    async def _fetch_fallback(
        self,
        track_id: str,
        playlist_context: Optional[str],
        profile: ClientProfile,
        signature_timestamp: Optional[int],
        tokens: Optional[OriginTokens],
    ) -> Optional[PlaybackDescriptor]:
        player_token = tokens.player_request_token if tokens and profile.supports_origin_token else None
        try:
            return await self.metadata_client.fetch_playback_descriptor(
                track_id, playlist_context, profile, signature_timestamp, player_token
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Metadata request failed: {exc}")
            return None

    def _apply_n_transform(self, url: str) -> str:
        if self.n_transform is None:
            return url
        try:
            return self.n_transform.transform_url(url)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"n-transform failed, keeping untransformed URL: {exc}")
            return url

    async def _try_alternate_n_transform(self, url: str) -> Optional[str]:
        if self.alternate_n_transform is None:
            return None
        try:
            transformed = self.alternate_n_transform.transform_url(url)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Alternate n-transform failed: {exc}")
            return None
        if transformed == url:
            return None
        if await self.validator.is_reachable(transformed):
            return transformed
        return None

    def _eligible_indices(self, start_index: int) -> List[int]:
        indices = []
        for index in range(start_index, len(self.fallbacks)):
            if index == PRIMARY_INDEX:
                indices.append(index)
                continue
            profile = self.fallbacks[index]
            if profile.requires_auth and not self.credentials.is_authenticated:
                continue
            indices.append(index)
        return indices

    async def resolve(
        self,
        track_id: str,
        playlist_context: Optional[str] = None,
        quality: AudioQuality = AudioQuality.AUTO,
        is_metered: bool = False,
    ) -> ResolutionResult:
        trace = ResolutionTrace()
        self.last_trace = trace
        self.logger.set_context(self.primary.name, track_id)
        self.logger.debug(f"Resolving (playlist={playlist_context}, quality={quality.value}, metered={is_metered})")

        is_authenticated = self.credentials.is_authenticated
        signature_timestamp = await self.timestamp_cache.get(track_id)
        tokens = await self._origin_tokens(track_id)

        trace.attempted.append(self.primary.name)
        try:
            primary_response = await self.metadata_client.fetch_playback_descriptor(
                track_id,
                playlist_context,
                self.primary,
                signature_timestamp,
                tokens.player_request_token if tokens else None,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.record_exception(exc, "Primary metadata request failed: ")
            return ResolutionResult.failure(ResolutionErrorKind.BAD_STATUS, str(exc))

        was_originally_age_restricted = primary_response.is_age_restricted
        adopted_profile = self.primary

        if was_originally_age_restricted and is_authenticated:
            self.logger.set_context(self.creator.name, track_id)
            trace.attempted.append(self.creator.name)
            creator_response = await self._fetch_fallback(track_id, playlist_context, self.creator, None, None)
            if creator_response is not None and creator_response.is_ok:
                self.logger.info(f"Using {self.creator.name} response for {primary_response.status.value} track")
                primary_response = creator_response
                adopted_profile = self.creator

        if primary_response.is_privately_owned:
            start_index = 1
        elif primary_response.is_age_restricted:
            start_index = 0
        else:
            start_index = PRIMARY_INDEX

        eligible = self._eligible_indices(start_index)
        for index in range(start_index, len(self.fallbacks)):
            if index not in eligible:
                trace.skipped.append(self.fallbacks[index].name)
        last_index = len(self.fallbacks) - 1
        fallback_timestamp = None if was_originally_age_restricted else signature_timestamp

        response: Optional[PlaybackDescriptor] = primary_response
        selected = None
        url: Optional[str] = None
        expires_in: Optional[int] = None
        accepted_profile: Optional[ClientProfile] = None

        for index in eligible:
            selected = None
            url = None
            expires_in = None

            if index == PRIMARY_INDEX:
                profile = adopted_profile
                response = primary_response
            else:
                profile = self.fallbacks[index]
                trace.attempted.append(profile.name)
                self.logger.set_context(profile.name, track_id)
                response = await self._fetch_fallback(
                    track_id, playlist_context, profile, fallback_timestamp, tokens
                )
            self.logger.set_context(profile.name, track_id)

            if response is None or not response.is_ok:
                if response is not None:
                    self.logger.debug(f"Status {response.status.value}, trying next profile")
                continue

            selected = select_format(response.candidate_formats, quality, is_metered)
            if selected is None:
                self.logger.debug("No usable audio format")
                continue

            url = await self.deobfuscator.resolve_url(
                selected,
                track_id,
                response,
                allow_expensive_fallback=not was_originally_age_restricted,
            )
            if url is None:
                self.logger.debug(f"No URL for format {selected.id}")
                continue

            if profile.supports_origin_token:
                if not response.urls_deciphered:
                    url = self._apply_n_transform(url)
                if tokens and tokens.streaming_data_token:
                    url = append_streaming_token(url, tokens.streaming_data_token)

            expires_in = response.expires_in_seconds
            if expires_in is None:
                self.logger.debug("Response has no expiry, trying next profile")
                continue

            if index == last_index or response.is_privately_owned:
                accepted_profile = profile
                break

            if await self.validator.is_reachable(url):
                trace.validated = True
                accepted_profile = profile
                break

            if profile.supports_origin_token and not response.urls_deciphered:
                alternate = await self._try_alternate_n_transform(url)
                if alternate is not None:
                    url = alternate
                    trace.validated = True
                    accepted_profile = profile
                    break
            self.logger.debug("Stream URL failed validation")

        if response is None:
            return ResolutionResult.failure(ResolutionErrorKind.BAD_STATUS, "No usable metadata response")
        if not response.is_ok:
            return ResolutionResult.failure(
                ResolutionErrorKind.BAD_STATUS, response.reason or response.status.value
            )
        if selected is None:
            return ResolutionResult.failure(ResolutionErrorKind.NO_FORMAT)
        if url is None:
            return ResolutionResult.failure(ResolutionErrorKind.NO_URL)
        if expires_in is None:
            return ResolutionResult.failure(ResolutionErrorKind.MISSING_EXPIRY)
        if accepted_profile is None:
            return ResolutionResult.failure(ResolutionErrorKind.NO_URL, "Stream URL failed validation")

        trace.accepted = accepted_profile.name
        stream = ResolvedStream(
            track_id=track_id,
            url=url,
            expires_at=self.clock() + expires_in,
            format_id=selected.id,
            profile_name=trace.accepted,
            mime_type=selected.mime_type,
            bitrate=selected.bitrate,
        )
        self.logger.info(f"Resolved format {selected.id} (expires in {expires_in}s)")
        return ResolutionResult.success(stream)
