"""Testes do candidate set (fallback e provedor Metered)."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from escuta.transport.candidates import (
    FALLBACK_CANDIDATES,
    CandidateServer,
    MeteredCandidateProvider,
    fetch_candidates,
    prefer_tcp,
)


def _make_provider(
    handler: Callable[[httpx.Request], httpx.Response],
) -> MeteredCandidateProvider:
    return MeteredCandidateProvider(
        "example.metered.live",
        "secret",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestCandidateServer:
    def test_numeric_credentials_coerced(self) -> None:
        server = CandidateServer.model_validate(
            {"urls": "turn:a.example.com:80", "username": 123, "credential": 456}
        )
        assert server.username == "123"
        assert server.credential == "456"

    def test_url_list(self) -> None:
        assert CandidateServer(urls="stun:a:1").url_list == ["stun:a:1"]
        assert CandidateServer(urls=["stun:a:1", "turn:b:2"]).url_list == ["stun:a:1", "turn:b:2"]

    def test_is_relay(self) -> None:
        assert CandidateServer(urls="turns:a:443").is_relay
        assert not CandidateServer(urls="stun:a:3478").is_relay


class TestPreferTcp:
    def test_turn_without_transport_gets_tcp(self) -> None:
        server = prefer_tcp(CandidateServer(urls="turn:a.example.com:80"))
        assert server.urls == "turn:a.example.com:80?transport=tcp"

    def test_explicit_transport_kept(self) -> None:
        server = CandidateServer(urls="turn:a.example.com:80?transport=udp")
        assert prefer_tcp(server) is server

    def test_stun_untouched(self) -> None:
        server = CandidateServer(urls="stun:a.example.com:3478")
        assert prefer_tcp(server) is server


class TestFallback:
    def test_fallback_has_stun_and_tcp_turn(self) -> None:
        assert len(FALLBACK_CANDIDATES) == 6
        assert not FALLBACK_CANDIDATES[0].is_relay
        assert "transport=tcp" in FALLBACK_CANDIDATES[3].url_list[0]
        assert all(s.username and s.credential for s in FALLBACK_CANDIDATES if s.is_relay)

    async def test_no_provider_uses_fallback(self) -> None:
        assert await fetch_candidates(None) == list(FALLBACK_CANDIDATES)

    async def test_provider_failure_uses_fallback(self) -> None:
        async def provider() -> list[CandidateServer]:
            raise httpx.ConnectError("dns")

        assert await fetch_candidates(provider) == list(FALLBACK_CANDIDATES)

    async def test_empty_provider_uses_fallback(self) -> None:
        async def provider() -> list[CandidateServer]:
            return []

        assert await fetch_candidates(provider) == list(FALLBACK_CANDIDATES)

    async def test_provider_result_returned(self) -> None:
        servers = [CandidateServer(urls="turn:own.example.com:443?transport=tcp")]

        async def provider() -> list[CandidateServer]:
            return servers

        assert await fetch_candidates(provider) == servers


class TestMeteredCandidateProvider:
    async def test_fetches_and_normalizes(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json=[
                    {"urls": "stun:stun.relay.metered.ca:80"},
                    {"urls": "turn:global.relay.metered.ca:80", "username": "u", "credential": 9},
                ],
            )

        servers = await _make_provider(handler)()

        assert requests[0].url.host == "example.metered.live"
        assert requests[0].url.path == "/api/v1/turn/credentials"
        assert requests[0].url.params["apiKey"] == "secret"
        assert servers[1].urls == "turn:global.relay.metered.ca:80?transport=tcp"
        assert servers[1].credential == "9"

    async def test_http_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": "forbidden"})

        with pytest.raises(httpx.HTTPStatusError):
            await _make_provider(handler)()

    async def test_unexpected_format_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"iceServers": []})

        with pytest.raises(ValueError, match="Formato inesperado"):
            await _make_provider(handler)()

    async def test_invalid_entry_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"username": "sem urls"}])

        with pytest.raises(ValueError, match="invalida"):
            await _make_provider(handler)()

    async def test_failure_through_fetch_uses_fallback(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        assert await fetch_candidates(_make_provider(handler)) == list(FALLBACK_CANDIDATES)
