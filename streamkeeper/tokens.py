"""Proof-of-origin tokens and signature timestamps."""

import asyncio
import json
import urllib.request
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .errors import RemoteSourceError
from .logger import StreamLogger, quiet_logger
from .models import ClientProfile

PLAYER_CONTEXT = "player"
STREAMING_CONTEXT = "gvs"


@dataclass(frozen=True)
class OriginTokens:
    """Token pair for one session."""
    player_request_token: Optional[str] = None
    streaming_data_token: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.player_request_token or self.streaming_data_token)


def parse_static_token(value: str):
    """Split a `CLIENT.CONTEXT+TOKEN` string into its parts."""
    head, sep, token = value.partition("+")
    if not sep or not token:
        raise ValueError(f"expected CLIENT.CONTEXT+TOKEN, got '{value}'")
    client, _, context = head.partition(".")
    return client.strip(), (context.strip() or PLAYER_CONTEXT), token.strip()


class StaticTokenProvider:
    """Serves pre-generated tokens supplied on the command line or environment."""

    name = "static"

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens: Dict[tuple, str] = {}
        for value in tokens:
            client, context, token = parse_static_token(value)
            self._tokens[(client, context)] = token

    async def get_tokens(
        self, track_id: str, session_id: Optional[str], profile: ClientProfile
    ) -> Optional[OriginTokens]:
        client = profile.ytdlp_client or profile.name
        tokens = OriginTokens(
            player_request_token=self._tokens.get((client, PLAYER_CONTEXT)),
            streaming_data_token=self._tokens.get((client, STREAMING_CONTEXT)),
        )
        return tokens or None


class BgUtilHttpTokenProvider:
    """Requests tokens from a running BGUtil HTTP server."""

    name = "bgutil-http"

    def __init__(self, base_url: str, disable_innertube: bool = False, timeout: float = 15.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.disable_innertube = disable_innertube
        self.timeout = timeout

    def _request_token(self, content_binding: str) -> str:
        payload = json.dumps(
            {"content_binding": content_binding, "disable_innertube": self.disable_innertube}
        ).encode("utf-8")
        request = urllib.request.Request(
            f"{self.base_url}/get_pot",
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(request, timeout=self.timeout) as response:
            data = json.loads(response.read().decode("utf-8"))
        token = data.get("poToken") if isinstance(data, dict) else None
        if not token:
            raise RemoteSourceError(f"BGUtil server at {self.base_url} returned no poToken")
        return token

    async def get_tokens(
        self, track_id: str, session_id: Optional[str], profile: ClientProfile
    ) -> Optional[OriginTokens]:
        if not session_id:
            return None
        player_token = await asyncio.to_thread(self._request_token, track_id)
        streaming_token = await asyncio.to_thread(self._request_token, session_id)
        return OriginTokens(player_token, streaming_token)


class BgUtilScriptTokenProvider:
    """Generates tokens by running the BGUtil `generate_once.js` script."""

    name = "bgutil-script"

    def __init__(self, script_path: str, node_bin: str = "node", timeout: float = 60.0) -> None:
        self.script_path = script_path
        self.node_bin = node_bin
        self.timeout = timeout

    async def _run_script(self, content_binding: str) -> str:
        process = await asyncio.create_subprocess_exec(
            self.node_bin,
            self.script_path,
            "-c",
            content_binding,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RemoteSourceError(f"BGUtil script timed out after {self.timeout}s")
        if process.returncode != 0:
            detail = stderr.decode("utf-8", "ignore").strip()
            raise RemoteSourceError(f"BGUtil script exited with {process.returncode}: {detail}")
        lines = [line for line in stdout.decode("utf-8", "ignore").splitlines() if line.strip()]
        if not lines:
            raise RemoteSourceError("BGUtil script produced no output")
        try:
            data = json.loads(lines[-1])
        except json.JSONDecodeError as exc:
            raise RemoteSourceError(f"BGUtil script output is not JSON: {exc}") from exc
        token = data.get("poToken") if isinstance(data, dict) else None
        if not token:
            raise RemoteSourceError("BGUtil script returned no poToken")
        return token

    async def get_tokens(
        self, track_id: str, session_id: Optional[str], profile: ClientProfile
    ) -> Optional[OriginTokens]:
        if not session_id:
            return None
        return OriginTokens(await self._run_script(track_id), await self._run_script(session_id))


class OriginTokenChain:
    """Tries token providers in order; failures are logged and skipped."""

    def __init__(self, providers: Iterable = (), logger: Optional[StreamLogger] = None) -> None:
        self.providers: List = list(providers)
        self.logger = logger or quiet_logger()

    async def get_tokens(
        self, track_id: str, session_id: Optional[str], profile: ClientProfile
    ) -> Optional[OriginTokens]:
        for provider in self.providers:
            try:
                tokens = await provider.get_tokens(track_id, session_id, profile)
            except Exception as exc:  # noqa: BLE001 - token generation is best-effort
                self.logger.warning(
                    f"PO token provider {getattr(provider, 'name', provider)!s} failed: {exc}"
                )
                continue
            if tokens:
                return tokens
        return None


TimestampFetcher = Callable[[str], Awaitable[Optional[int]]]


class SignatureTimestampCache:
    """Per-track signature timestamps with forced refresh on invalidation."""

    def __init__(
        self,
        fetch: Optional[TimestampFetcher] = None,
        default: Optional[int] = None,
        logger: Optional[StreamLogger] = None,
    ) -> None:
        self._fetch = fetch
        self._default = default
        self._values: Dict[str, Optional[int]] = {}
        self.logger = logger or quiet_logger()

    async def get(self, track_id: str) -> Optional[int]:
        if track_id in self._values:
            return self._values[track_id]
        value = self._default
        if self._fetch is not None:
            try:
                value = await self._fetch(track_id)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(f"Signature timestamp lookup failed: {exc}")
                value = None
        self._values[track_id] = value
        return value

    def invalidate(self, track_id: str) -> None:
        self._values.pop(track_id, None)
