"""Audio format selection for a resolved playback descriptor."""

from typing import Iterable, Optional

from .models import (
    PREFERRED_CONTAINER_BONUS,
    PREFERRED_CONTAINER_PREFIX,
    AudioQuality,
    Format,
)


def quality_multiplier(quality: AudioQuality, is_metered: bool) -> int:
    """Return +1 to prefer high bitrates, -1 to prefer low ones."""
    if quality is AudioQuality.HIGH:
        return 1
    if quality is AudioQuality.LOW:
        return -1
    return -1 if is_metered else 1


def score_format(fmt: Format, multiplier: int) -> int:
    bonus = PREFERRED_CONTAINER_BONUS if fmt.mime_type.startswith(PREFERRED_CONTAINER_PREFIX) else 0
    return fmt.bitrate * multiplier + bonus


def select_format(
    formats: Iterable[Format],
    quality: AudioQuality = AudioQuality.AUTO,
    is_metered: bool = False,
) -> Optional[Format]:
    """Pick the best original audio format, or None when nothing qualifies.

    Ties keep the earliest candidate in the input order, so the result is
    stable for a given list.
    """
    multiplier = quality_multiplier(quality, is_metered)
    best: Optional[Format] = None
    best_score = 0
    for fmt in formats:
        if not (fmt.is_audio and fmt.is_original_track):
            continue
        score = score_format(fmt, multiplier)
        if best is None or score > best_score:
            best = fmt
            best_score = score
    return best
