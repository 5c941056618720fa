"""Console logger for stream resolution and playback recovery."""

import re
import sys
from typing import Optional


class StreamLogger:
    """Context-aware logger shared by the resolver, the recovery loop and yt-dlp."""

    HTTP_403_PATTERN = re.compile(r"http error 403|\b403\b.*forbidden")

    IGNORED_FRAGMENTS = (
        "ffmpeg not found",
    )

    def __init__(self, verbose: bool = False, quiet: bool = False) -> None:
        self.verbose = verbose
        self.quiet = quiet
        self.current_client: Optional[str] = None
        self.current_track_id: Optional[str] = None
        self.warning_count = 0
        self.error_count = 0
        self.http_403_count = 0
        self.failed_probe_count = 0

    def set_context(self, client: Optional[str], track_id: Optional[str] = None) -> None:
        self.current_client = client
        self.current_track_id = track_id

    def set_track(self, track_id: Optional[str]) -> None:
        self.current_track_id = track_id

    def record_failed_probe(self, status: Optional[int] = None) -> None:
        self.failed_probe_count += 1
        if status == 403:
            self.http_403_count += 1

    def _format_with_context(self, message: str) -> str:
        context_parts = []
        if self.current_client:
            context_parts.append(f"client={self.current_client}")
        if self.current_track_id:
            context_parts.append(f"track={self.current_track_id}")
        if context_parts:
            return f"[{' '.join(context_parts)}] {message}"
        return message

    def _print(self, message: str, file=None) -> None:
        if self.quiet:
            return
        print(self._format_with_context(message), file=file or sys.stdout)

    @staticmethod
    def _ensure_text(message) -> str:
        if isinstance(message, bytes):
            return message.decode("utf-8", "ignore")
        return str(message)

    def _track_message(self, text: str) -> bool:
        lowered = text.lower()
        if any(fragment in lowered for fragment in self.IGNORED_FRAGMENTS):
            return False
        if self.HTTP_403_PATTERN.search(lowered):
            self.http_403_count += 1
        return True

    def debug(self, message) -> None:  # yt-dlp calls this
        if self.verbose:
            self._print(self._ensure_text(message))

    def info(self, message) -> None:
        self._print(self._ensure_text(message))

    def warning(self, message) -> None:
        text = self._ensure_text(message)
        if self._track_message(text):
            self.warning_count += 1
            self._print(text, file=sys.stderr)

    def error(self, message) -> None:
        text = self._ensure_text(message)
        if self._track_message(text):
            self.error_count += 1
            self._print(text, file=sys.stderr)

    def record_exception(self, exc: BaseException, prefix: str = "") -> None:
        text = self._ensure_text(exc) or type(exc).__name__
        self.error(f"{prefix}{text}" if prefix else text)


def quiet_logger() -> StreamLogger:
    """Logger used when a component is built without one."""
    return StreamLogger(quiet=True)
