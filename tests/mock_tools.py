"""Mock tool implementations for testing."""

import asyncio

from chatloop.tools.base import Tool
from chatloop.types import ToolOutcome


class EchoTool(Tool):
    def __init__(self):
        self.calls = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, owner, args, tool_use=None):
        self.calls.append(args)
        return {"result": args.get("message", "")}


class FailingTool(Tool):
    """Reports an ``{error}`` outcome."""

    @property
    def name(self) -> str:
        return "failing"

    @property
    def description(self) -> str:
        return "Always reports an error."

    @property
    def input_schema(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, owner, args, tool_use=None):
        return {"error": "Something went wrong"}


class RaisingTool(Tool):
    @property
    def name(self) -> str:
        return "raising"

    @property
    def description(self) -> str:
        return "Raises inside execute."

    @property
    def input_schema(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, owner, args, tool_use=None):
        raise RuntimeError("boom")


class SlowTool(Tool):
    @property
    def name(self) -> str:
        return "slow"

    @property
    def description(self) -> str:
        return "Sleeps longer than any test timeout."

    @property
    def input_schema(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, owner, args, tool_use=None):
        await asyncio.sleep(10)
        return {"result": "late"}


class AsyncResultTool(Tool):
    """Starts work elsewhere and returns a placeholder."""

    @property
    def name(self) -> str:
        return "background_job"

    @property
    def description(self) -> str:
        return "Queues a job whose result arrives later."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {"job": {"type": "string"}},
            "required": ["job"],
        }

    async def execute(self, owner, args, tool_use=None):
        return {"state": "asynchronous_result", "result": f"Job {args['job']} queued"}


class DeleteTool(Tool):
    """Configured as dangerous in tests."""

    @property
    def name(self) -> str:
        return "delete_resource"

    @property
    def description(self) -> str:
        return "Deletes a resource by ID."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "resource_id": {"type": "string", "description": "Resource to delete"},
            },
            "required": ["resource_id"],
        }

    async def execute(self, owner, args, tool_use=None):
        return ToolOutcome.ok(f"Deleted {args.get('resource_id', '')}", diff="- resource")


class SecretTool(Tool):
    @property
    def name(self) -> str:
        return "login"

    @property
    def description(self) -> str:
        return "Logs in with a password."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "user": {"type": "string"},
                "password": {"type": "string"},
            },
            "required": ["user", "password"],
        }

    @property
    def secret_fields(self) -> list[str]:
        return ["password"]

    async def execute(self, owner, args, tool_use=None):
        return {"result": f"Logged in as {args['user']}"}


class FakeGetUrlTool(Tool):
    """Stands in for ``get_url`` without touching the network."""

    def __init__(self):
        self.urls = []

    @property
    def name(self) -> str:
        return "get_url"

    @property
    def description(self) -> str:
        return "Fetch a URL."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {"url": {"type": "string"}},
            "required": ["url"],
        }

    async def execute(self, owner, args, tool_use=None):
        self.urls.append(args["url"])
        return {"result": f"Title: {args['url']}\n\npage body"}


class SearchTool(Tool):
    """An unrelated tool that happens to accept a url."""

    @property
    def name(self) -> str:
        return "search"

    @property
    def description(self) -> str:
        return "Search the web."

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {"query": {"type": "string"}, "url": {"type": "string"}},
        }

    async def execute(self, owner, args, tool_use=None):
        return {"result": "search results"}
