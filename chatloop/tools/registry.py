from __future__ import annotations

import logging
import threading
from importlib.metadata import entry_points
from typing import Callable, Iterable

from chatloop.errors import NotFoundError
from chatloop.tools.base import Tool

logger = logging.getLogger(__name__)

Loader = Callable[["ToolRegistry"], None]


class ToolRegistry:
    """
    Name -> Tool index.

    Tools are registered explicitly or by loaders added with ``add_loader``.
    Loaders run exactly once, on the first lookup, under a lock; after that
    the registry is read-only.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._loaders: list[Loader] = []
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if self._loaded:
            raise RuntimeError(f"Registry is frozen; cannot register {tool.name}")
        self._register(tool, overwrite=overwrite)

    def _register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def add_loader(self, loader: Loader) -> None:
        if self._loaded:
            raise RuntimeError("Registry is frozen; cannot add loaders")
        self._loaders.append(loader)

    def ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if self._loaded:
                return
            for loader in self._loaders:
                loader(self)
            self._loaded = True
            logger.debug("Tool registry loaded: %s", ", ".join(sorted(self._tools)))

    def get(self, name: str) -> Tool | None:
        self.ensure_loaded()
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise NotFoundError(f"Tool not found: {name}")
        return t

    def list(self) -> list[Tool]:
        self.ensure_loaded()
        return sorted(self._tools.values(), key=lambda t: t.name)

    def definitions(self, names: Iterable[str] | None = None) -> list[dict]:
        """Tool definitions for a turn, optionally restricted to *names*."""
        tools = self.list()
        if names is not None:
            wanted = set(names)
            tools = [t for t in tools if t.name in wanted]
        return [t.to_definition() for t in tools]

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "chatloop.tools",
        allow_distributions: set[str] | None = None,
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools advertised under the ``chatloop.tools`` entry point group."""
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            if allow_tools and ep.name not in allow_tools:
                continue
            tool_cls = ep.load()
            self._register(tool_cls())
            loaded += 1
        if loaded:
            logger.info("Loaded %d plugin tool(s) from %s", loaded, group)
        return loaded
