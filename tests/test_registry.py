"""
Tests for Tool Registry Module
==============================

Tests for ToolRegistry, ExecutorRegistry and the built-in tool definitions.
"""

import pytest

from codeforge_agent.models import RiskLevel, ToolCategory, ToolDefinition
from codeforge_agent.tools import (
    ALL_TOOLS,
    ExecutorRegistry,
    ToolRegistry,
    create_default_registry,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def registry():
    """Create the default registry."""
    return create_default_registry()


def make_tool(name="sample", risk_level=RiskLevel.AUTO, category=ToolCategory.UTILITY):
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        parameters={"type": "object", "properties": {"path": {"type": "string"}}, "required": []},
        risk_level=risk_level,
        category=category,
    )


# =============================================================================
# ToolDefinition Tests
# =============================================================================

class TestToolDefinition:
    """Tests for ToolDefinition immutability and serialization."""

    def test_parameters_are_read_only(self):
        """Registered schemas cannot be mutated in place."""
        tool = make_tool()
        with pytest.raises(TypeError):
            tool.parameters["type"] = "array"
        with pytest.raises(TypeError):
            tool.parameters["properties"]["path"]["type"] = "number"

    def test_attributes_are_frozen(self):
        tool = make_tool()
        with pytest.raises(Exception):
            tool.risk_level = RiskLevel.CONFIRM

    def test_schema_returns_mutable_copy(self):
        """Mutating the returned schema leaves the definition unchanged."""
        tool = make_tool()
        schema = tool.schema()
        schema["properties"]["path"]["type"] = "number"
        assert tool.parameters["properties"]["path"]["type"] == "string"

    def test_to_dict(self):
        data = make_tool(risk_level=RiskLevel.NOTIFY).to_dict()
        assert data["name"] == "sample"
        assert data["risk_level"] == "notify"
        assert data["category"] == "utility"
        assert data["parameters"]["type"] == "object"


# =============================================================================
# ToolRegistry Tests
# =============================================================================

class TestToolRegistry:
    """Tests for ToolRegistry lookups."""

    def test_get_all_preserves_order(self):
        tools = [make_tool("b"), make_tool("a"), make_tool("c")]
        registry = ToolRegistry(tools)
        assert [t.name for t in registry.get_all()] == ["b", "a", "c"]

    def test_get_by_name_round_trip(self, registry):
        """Every registered tool is returned unchanged by name."""
        for tool in registry.get_all():
            assert registry.get_by_name(tool.name) is tool

    def test_get_by_name_unknown(self, registry):
        assert registry.get_by_name("no_such_tool") is None

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ToolRegistry([make_tool("same"), make_tool("same")])

    def test_invalid_risk_level_rejected(self):
        tool = make_tool()
        object.__setattr__(tool, "risk_level", "dangerous")
        with pytest.raises(ValueError, match="risk level"):
            ToolRegistry([tool])

    def test_get_by_category(self, registry):
        git_tools = registry.get_by_category(ToolCategory.GIT)
        assert git_tools
        assert all(t.category == ToolCategory.GIT for t in git_tools)
        assert "git_push" in {t.name for t in git_tools}

    def test_get_by_risk_level(self, registry):
        confirm = {t.name for t in registry.get_by_risk_level(RiskLevel.CONFIRM)}
        assert {"delete_file", "git_push", "git_create_pr"} <= confirm
        assert "read_file" not in confirm

    def test_contains_and_len(self, registry):
        assert "read_file" in registry
        assert len(registry) == len(ALL_TOOLS)

    def test_stats(self, registry):
        stats = registry.stats()
        assert stats["total"] == len(ALL_TOOLS)
        assert sum(stats["by_category"].values()) == stats["total"]
        assert sum(stats["by_risk_level"].values()) == stats["total"]
        assert stats["by_risk_level"]["confirm"] >= 3

    def test_subset_keeps_order(self):
        registry = ToolRegistry([make_tool("b"), make_tool("a"), make_tool("c")])
        subset = registry.subset(["c", "b", "unknown"])
        assert [t.name for t in subset] == ["b", "c"]
        assert subset.get_by_name("b") is registry.get_by_name("b")
        assert len(registry) == 3


# =============================================================================
# Built-in Definitions Tests
# =============================================================================

class TestBuiltinTools:
    """Tests for the built-in tool catalog."""

    def test_names_unique(self):
        names = [t.name for t in ALL_TOOLS]
        assert len(names) == len(set(names))

    def test_declared_levels(self, registry):
        assert registry.get_by_name("read_file").risk_level == RiskLevel.AUTO
        assert registry.get_by_name("create_file").risk_level == RiskLevel.NOTIFY
        assert registry.get_by_name("update_file").risk_level == RiskLevel.NOTIFY
        assert registry.get_by_name("delete_file").risk_level == RiskLevel.CONFIRM

    def test_schemas_are_objects(self):
        for tool in ALL_TOOLS:
            assert tool.parameters["type"] == "object"
            for required in tool.parameters["required"]:
                assert required in tool.parameters["properties"]


# =============================================================================
# ExecutorRegistry Tests
# =============================================================================

class TestExecutorRegistry:
    """Tests for ExecutorRegistry."""

    def test_register_and_get(self):
        executors = ExecutorRegistry()

        async def run(args):
            return args

        executors.register("read_file", run)
        assert executors.get("read_file") is run
        assert executors.has("read_file")
        assert executors.names() == ["read_file"]

    def test_register_non_callable(self):
        with pytest.raises(TypeError):
            ExecutorRegistry().register("read_file", "not a function")

    def test_unregister(self):
        executors = ExecutorRegistry()

        async def run(args):
            return None

        executors.register_many({"a": run, "b": run})
        executors.unregister("a")
        executors.unregister("missing")
        assert executors.names() == ["b"]
        assert executors.get("a") is None
