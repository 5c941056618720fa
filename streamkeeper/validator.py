"""Lightweight reachability probe for candidate stream URLs."""

import asyncio
import urllib.error
import urllib.request
from typing import Optional

from .logger import StreamLogger, quiet_logger
from .models import DEFAULT_VALIDATE_TIMEOUT, USER_AGENT_WEB


class UrlValidator:
    """Issues a header-only request and reports whether the URL is usable."""

    def __init__(
        self,
        cookie: Optional[str] = None,
        timeout: float = DEFAULT_VALIDATE_TIMEOUT,
        user_agent: str = USER_AGENT_WEB,
        proxy: Optional[str] = None,
        logger: Optional[StreamLogger] = None,
    ) -> None:
        self.cookie = cookie
        self.timeout = timeout
        self.user_agent = user_agent
        self.logger = logger or quiet_logger()
        handlers = []
        if proxy:
            handlers.append(urllib.request.ProxyHandler({"http": proxy, "https": proxy}))
        self._opener = urllib.request.build_opener(*handlers)

    def build_request(self, url: str) -> urllib.request.Request:
        headers = {"User-Agent": self.user_agent}
        if self.cookie:
            headers["Cookie"] = self.cookie
        return urllib.request.Request(url, headers=headers, method="HEAD")

    def probe(self, url: str) -> bool:
        """Blocking probe; returns False on any exception or non-2xx status."""
        try:
            with self._opener.open(self.build_request(url), timeout=self.timeout) as response:
                status = getattr(response, "status", None) or response.getcode()
        except urllib.error.HTTPError as exc:
            self.logger.record_failed_probe(exc.code)
            self.logger.debug(f"Probe rejected with HTTP {exc.code}")
            return False
        except Exception as exc:  # noqa: BLE001 - any failure means unreachable
            self.logger.record_failed_probe()
            self.logger.debug(f"Probe failed: {exc}")
            return False
        if 200 <= status < 300:
            return True
        self.logger.record_failed_probe(status)
        return False

    async def is_reachable(self, url: str) -> bool:
        return await asyncio.to_thread(self.probe, url)
