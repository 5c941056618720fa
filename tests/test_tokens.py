import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from streamkeeper.logger import StreamLogger
from streamkeeper.models import PRIMARY_PROFILE, ClientProfile
from streamkeeper.tokens import (
    BgUtilHttpTokenProvider,
    OriginTokenChain,
    OriginTokens,
    SignatureTimestampCache,
    StaticTokenProvider,
    parse_static_token,
)


def test_parse_static_token():
    assert parse_static_token("web_music.gvs+TOKEN") == ("web_music", "gvs", "TOKEN")
    assert parse_static_token("web+TOKEN") == ("web", "player", "TOKEN")
    with pytest.raises(ValueError):
        parse_static_token("web.player")


def test_static_provider_matches_profile_client():
    provider = StaticTokenProvider(["web_music.player+P1", "web_music.gvs+G1", "ios.gvs+OTHER"])

    tokens = asyncio.run(provider.get_tokens("abc12345678", "session", PRIMARY_PROFILE))

    assert tokens == OriginTokens("P1", "G1")


def test_static_provider_without_match_returns_none():
    provider = StaticTokenProvider(["ios.gvs+OTHER"])

    assert asyncio.run(provider.get_tokens("abc12345678", "session", PRIMARY_PROFILE)) is None


def test_bgutil_http_binds_tokens_to_track_and_session(monkeypatch):
    provider = BgUtilHttpTokenProvider("http://127.0.0.1:4416/")
    bindings = []

    def fake_request(content_binding):
        bindings.append(content_binding)
        return f"token-for-{content_binding}"

    monkeypatch.setattr(provider, "_request_token", fake_request)

    tokens = asyncio.run(provider.get_tokens("abc12345678", "visitor", PRIMARY_PROFILE))

    assert provider.base_url == "http://127.0.0.1:4416"
    assert bindings == ["abc12345678", "visitor"]
    assert tokens.player_request_token == "token-for-abc12345678"
    assert tokens.streaming_data_token == "token-for-visitor"


def test_bgutil_http_needs_a_session():
    provider = BgUtilHttpTokenProvider("http://127.0.0.1:4416")

    assert asyncio.run(provider.get_tokens("abc12345678", None, PRIMARY_PROFILE)) is None


class FailingProvider:
    name = "failing"

    async def get_tokens(self, track_id, session_id, profile):
        raise RuntimeError("provider offline")


class FixedProvider:
    name = "fixed"

    def __init__(self, tokens):
        self.tokens = tokens

    async def get_tokens(self, track_id, session_id, profile):
        return self.tokens


def test_chain_skips_failing_providers(capsys):
    logger = StreamLogger()
    chain = OriginTokenChain([FailingProvider(), FixedProvider(None), FixedProvider(OriginTokens("p", "s"))], logger)

    tokens = asyncio.run(chain.get_tokens("abc12345678", "session", ClientProfile("WEB")))

    assert tokens == OriginTokens("p", "s")
    assert logger.warning_count == 1
    assert "provider offline" in capsys.readouterr().err


def test_signature_timestamp_cached_until_invalidated():
    calls = []

    async def fetch(track_id):
        calls.append(track_id)
        return 20000 + len(calls)

    cache = SignatureTimestampCache(fetch=fetch)

    async def scenario():
        first = await cache.get("abc12345678")
        second = await cache.get("abc12345678")
        cache.invalidate("abc12345678")
        cache.invalidate("never-seen")
        third = await cache.get("abc12345678")
        return first, second, third

    assert asyncio.run(scenario()) == (20001, 20001, 20002)


def test_signature_timestamp_failure_yields_none():
    async def fetch(track_id):
        raise RuntimeError("player download failed")

    cache = SignatureTimestampCache(fetch=fetch, default=123)

    assert asyncio.run(cache.get("abc12345678")) is None


def test_signature_timestamp_default_without_fetcher():
    assert asyncio.run(SignatureTimestampCache(default=20073).get("abc12345678")) == 20073
