"""Tests for the built-in get_url tool."""

from __future__ import annotations

import httpx

from chatloop.tools.builtin.get_url import GetUrlTool, JinaReader


def _reader(handler, api_key=""):
    return JinaReader(api_key, transport=httpx.MockTransport(handler))


async def test_fetch_success():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="# Example\n\nbody")

    tool = GetUrlTool(_reader(handler, api_key="jk"))
    outcome = await tool.execute(None, {"url": "https://example.com/page"})

    assert outcome.is_success
    assert outcome.content == "Title: https://example.com/page\n\n# Example\n\nbody"
    assert str(seen[0].url) == "https://r.jina.ai/example.com/page"
    assert seen[0].headers["Authorization"] == "Bearer jk"


async def test_no_api_key_no_auth_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="ok")

    await GetUrlTool(_reader(handler)).execute(None, {"url": "http://example.com"})
    assert "Authorization" not in seen[0].headers


async def test_invalid_scheme_rejected_without_request():
    def handler(request):
        raise AssertionError("should not be called")

    outcome = await GetUrlTool(_reader(handler)).execute(None, {"url": "ftp://example.com"})
    assert outcome.is_error
    assert outcome.content == "Invalid URL format. Must start with http:// or https://"


async def test_http_error_reported():
    outcome = await GetUrlTool(_reader(lambda r: httpx.Response(404, text="missing"))).execute(
        None, {"url": "https://example.com/x"}
    )
    assert outcome.is_error
    assert outcome.content.startswith("Error fetching URL: HTTP Error: 404")


async def test_network_error_reported():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    outcome = await GetUrlTool(_reader(handler)).execute(None, {"url": "https://down.test"})
    assert outcome.is_error
    assert "refused" in outcome.content


def test_reader_url_passthrough():
    assert JinaReader.reader_url("https://r.jina.ai/https://a.test") == "https://r.jina.ai/https://a.test"
    assert JinaReader.reader_url("HTTPS://a.test/b") == "https://r.jina.ai/a.test/b"


def test_api_key_from_env(monkeypatch):
    monkeypatch.setenv("MY_JINA", "from-env")
    assert GetUrlTool(api_key_env="MY_JINA").reader.api_key == "from-env"
