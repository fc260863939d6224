"""Callable tools that LLM agents expose to model providers.

A tool is described by a name, a description and a JSON Schema for its
arguments; ``invoke`` executes a call with raw JSON arguments.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable

__all__ = [
    "Tool",
    "FuncTool",
    "ToolSpec",
    "ToolRegistry",
    "UnknownToolError",
    "spec",
    "specs",
]


class Tool(ABC):
    """A function an agent can invoke on behalf of a model."""

    name: str
    description: str
    schema: bytes

    @abstractmethod
    def invoke(self, args: bytes) -> bytes:
        """Run the tool with raw JSON arguments and return raw JSON."""


@dataclass(frozen=True)
class FuncTool(Tool):
    """A tool built from a plain function and its metadata."""

    name: str
    description: str
    schema: bytes
    fn: Callable[[bytes], bytes]

    def invoke(self, args: bytes) -> bytes:
        return self.fn(args)


@dataclass(frozen=True)
class ToolSpec:
    """Provider-neutral description of a tool for chat requests."""

    name: str
    description: str
    schema: bytes


class UnknownToolError(LookupError):
    """Raised when invoking a tool name that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"tool: unknown tool {name!r}")
        self.name = name


class ToolRegistry:
    """Thread-safe mapping from tool name to tool."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Add ``tool`` under its name, replacing any tool of that name."""
        with self._lock:
            self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        """Return the tool registered under ``name``, or None."""
        with self._lock:
            return self._tools.get(name)

    def tools(self) -> list[Tool]:
        """Every registered tool; order is unspecified."""
        with self._lock:
            return list(self._tools.values())

    def names(self) -> list[str]:
        """Every registered tool name; order is unspecified."""
        with self._lock:
            return list(self._tools)

    def invoke(self, name: str, args: bytes) -> bytes:
        """Invoke the tool registered under ``name``."""
        tool = self.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool.invoke(args)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)


def spec(tool: Tool) -> ToolSpec:
    """Describe ``tool`` as a provider-neutral spec."""
    return ToolSpec(name=tool.name, description=tool.description, schema=tool.schema)


def specs(tools: Iterable[Tool]) -> list[ToolSpec]:
    """Describe each tool, keeping their order."""
    return [spec(tool) for tool in tools]