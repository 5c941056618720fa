"""Ordered strategy chain turning a candidate format into a fetchable URL."""

import asyncio
from typing import Optional

from .cipher import PlanSignatureCipher
from .logger import StreamLogger, quiet_logger
from .models import Format, PlaybackDescriptor


class UrlDeobfuscator:
    """Tries each URL strategy in order and returns the first usable result.

    1. the format's raw URL
    2. local signature deobfuscation with the loaded cipher plan
    3. (stops here unless the expensive path is allowed)
    4. full extraction through the heavy extractor
    5. an alternate URL set, matched by format id or by audio capability

    A strategy that raises is logged and treated as having produced nothing.
    """

    def __init__(
        self,
        cipher: Optional[PlanSignatureCipher] = None,
        extractor=None,
        logger: Optional[StreamLogger] = None,
    ) -> None:
        self.cipher = cipher or PlanSignatureCipher(None)
        self.extractor = extractor
        self.logger = logger or quiet_logger()

    def _local_cipher(self, fmt: Format, track_id: str) -> Optional[str]:
        if not fmt.obfuscated_descriptor:
            return None
        try:
            return self.cipher.deobfuscate(fmt.obfuscated_descriptor, track_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Local signature deobfuscation failed for format {fmt.id}: {exc}")
            return None

    async def _extract(self, fmt: Format, track_id: str) -> Optional[str]:
        try:
            return await self.extractor.extract_stream_url(fmt, track_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Extraction fallback failed for format {fmt.id}: {exc}")
            return None

    async def _alternate(
        self, fmt: Format, track_id: str, descriptor: Optional[PlaybackDescriptor]
    ) -> Optional[str]:
        try:
            candidates = await self.extractor.alternate_stream_urls(track_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Alternate stream lookup failed: {exc}")
            return None

        by_id = dict(candidates)
        if by_id.get(fmt.id):
            return by_id[fmt.id]

        # Fall back to any audio-capable format the descriptor listed
        audio_ids = [
            candidate.id
            for candidate in (descriptor.candidate_formats if descriptor else ())
            if candidate.is_audio
        ]
        for format_id in audio_ids:
            if by_id.get(format_id):
                return by_id[format_id]
        return None

    async def resolve_url(
        self,
        fmt: Format,
        track_id: str,
        descriptor: Optional[PlaybackDescriptor] = None,
        allow_expensive_fallback: bool = True,
    ) -> Optional[str]:
        if fmt.raw_url:
            return fmt.raw_url

        url = self._local_cipher(fmt, track_id)
        if url:
            self.logger.debug(f"Format {fmt.id} deobfuscated locally")
            return url

        if not allow_expensive_fallback:
            return None
        if self.extractor is None:
            return None

        url = await self._extract(fmt, track_id)
        if url:
            self.logger.debug(f"Format {fmt.id} resolved through extraction fallback")
            return url

        url = await self._alternate(fmt, track_id, descriptor)
        if url:
            self.logger.debug(f"Format {fmt.id} resolved from alternate stream URLs")
        return url
