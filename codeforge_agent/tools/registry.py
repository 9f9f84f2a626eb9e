"""
Tool Registry
=============

Read-only table of tool definitions plus the executor registry through which
external subsystems (file store, version control, GitHub client) plug in.

The tool table is filled once at construction and never changes afterwards,
so it is safe to share between conversations.
"""

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from codeforge_agent.models import RiskLevel, ToolCategory, ToolDefinition

logger = logging.getLogger(__name__)

# An executor receives the parsed tool arguments and returns any
# JSON-serializable payload, or a dict with a "success" key.
ToolExecutor = Callable[[dict], Awaitable[Any]]


class ToolRegistry:
    """Immutable lookup table of ToolDefinition entries."""

    def __init__(self, tools: Iterable[ToolDefinition]):
        by_name: dict[str, ToolDefinition] = {}
        for tool in tools:
            if not isinstance(tool.risk_level, RiskLevel):
                raise ValueError(f"Tool {tool.name} has invalid risk level: {tool.risk_level!r}")
            if not isinstance(tool.category, ToolCategory):
                raise ValueError(f"Tool {tool.name} has invalid category: {tool.category!r}")
            if tool.name in by_name:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            by_name[tool.name] = tool
        self._tools = by_name
        self._ordered = tuple(by_name.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self):
        return iter(self._ordered)

    def get_all(self) -> list[ToolDefinition]:
        return list(self._ordered)

    def get_by_name(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_by_category(self, category: ToolCategory) -> list[ToolDefinition]:
        return [t for t in self._ordered if t.category == category]

    def get_by_risk_level(self, level: RiskLevel) -> list[ToolDefinition]:
        return [t for t in self._ordered if t.risk_level == level]

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """
        Registry of only the named tools, in this registry's order.

        Used to advertise just the tools that have an executor behind them.
        Unknown names are ignored.
        """
        wanted = set(names)
        return ToolRegistry(t for t in self._ordered if t.name in wanted)

    def stats(self) -> dict:
        """Count tools per category and per risk level."""
        by_category = {c.value: 0 for c in ToolCategory}
        by_risk_level = {r.value: 0 for r in RiskLevel}
        for tool in self._ordered:
            by_category[tool.category.value] += 1
            by_risk_level[tool.risk_level.value] += 1
        return {
            "total": len(self._ordered),
            "by_category": by_category,
            "by_risk_level": by_risk_level,
        }


class ExecutorRegistry:
    """
    Maps tool names to async executor functions.

    The risk gate only ever reaches external subsystems through this table.
    """

    def __init__(self):
        self._executors: dict[str, ToolExecutor] = {}

    def register(self, tool_name: str, executor: ToolExecutor) -> None:
        if not callable(executor):
            raise TypeError(f"Executor for {tool_name} is not callable")
        if tool_name in self._executors:
            logger.debug("Replacing executor for %s", tool_name)
        self._executors[tool_name] = executor

    def register_many(self, executors: dict[str, ToolExecutor]) -> None:
        for tool_name, executor in executors.items():
            self.register(tool_name, executor)

    def unregister(self, tool_name: str) -> None:
        self._executors.pop(tool_name, None)

    def get(self, tool_name: str) -> Optional[ToolExecutor]:
        return self._executors.get(tool_name)

    def has(self, tool_name: str) -> bool:
        return tool_name in self._executors

    def names(self) -> list[str]:
        return sorted(self._executors)


def create_default_registry() -> ToolRegistry:
    """Build the registry holding every built-in tool."""
    from codeforge_agent.tools.definitions import ALL_TOOLS

    return ToolRegistry(ALL_TOOLS)
