"""Fetch a web page as readable text through the Jina reader service."""

from __future__ import annotations

import logging
import os
import re
from typing import Any

import httpx

from chatloop.tools.base import Tool
from chatloop.types import ToolOutcome

logger = logging.getLogger(__name__)

READER_URL = "https://r.jina.ai"
_HTTP_URL = re.compile(r"\Ahttps?://", re.IGNORECASE)


class JinaReader:
    """
    Thin client for ``r.jina.ai``.

    The target URL, stripped of its scheme, becomes the path of the reader
    request.
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def reader_url(url: str) -> str:
        if url.startswith(READER_URL):
            return url
        return f"{READER_URL}/{_HTTP_URL.sub('', url)}"

    async def fetch(self, url: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.get(self.reader_url(url), headers=headers)
        if resp.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP Error: {resp.status_code} - Body: {resp.text[:500]}",
                request=resp.request,
                response=resp,
            )
        return resp.text


class GetUrlTool(Tool):
    def __init__(self, reader: JinaReader | None = None, *, api_key_env: str = "JINA_API_KEY"):
        self.reader = reader or JinaReader(os.environ.get(api_key_env, ""))

    @property
    def name(self) -> str:
        return "get_url"

    @property
    def description(self) -> str:
        return (
            "Fetch content from a URL using the Jina AI service. "
            "The URL must use HTTP or HTTPS protocol."
        )

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "description": "The URL to fetch content from (must be HTTP/HTTPS)",
                },
            },
            "required": ["url"],
        }

    async def execute(self, owner: Any, args: dict, tool_use: Any = None) -> ToolOutcome:
        url = args.get("url", "")
        if not _HTTP_URL.match(url):
            return ToolOutcome.fail("Invalid URL format. Must start with http:// or https://")

        logger.info("Fetching content from %s", url)
        try:
            content = await self.reader.fetch(url)
        except httpx.HTTPError as exc:
            logger.error("Error fetching %s: %s", url, exc)
            return ToolOutcome.fail(f"Error fetching URL: {exc}")
        return ToolOutcome.ok(f"Title: {url}\n\n{content}")
