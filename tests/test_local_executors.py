"""
Tests for Local Executors
=========================

Tests for the filesystem executors rooted at a project directory.
"""

import tempfile
from pathlib import Path

import pytest

from codeforge_agent.audit import AuditLog
from codeforge_agent.executors import LocalExecutors, register_local_executors
from codeforge_agent.models import ToolCall
from codeforge_agent.risk import RiskGate
from codeforge_agent.tools import ExecutorRegistry, create_default_registry


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_project():
    """Create a temporary project with a few files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "src" / "components").mkdir(parents=True)
        (root / "src" / "components" / "Sidebar.tsx").write_text("export const Sidebar = 1;\n")
        (root / "src" / "index.ts").write_text("import './components/Sidebar';\n")
        (root / "node_modules" / "dep").mkdir(parents=True)
        (root / "node_modules" / "dep" / "index.js").write_text("")
        yield root


@pytest.fixture
def local(temp_project):
    return LocalExecutors(temp_project)


# =============================================================================
# Path Tests
# =============================================================================

class TestPaths:
    """Tests for path resolution."""

    def test_resolve_inside(self, local, temp_project):
        assert local.resolve("src/index.ts") == (temp_project / "src" / "index.ts").resolve()
        assert local.resolve("/src/index.ts") == local.resolve("src/index.ts")
        assert local.resolve(None) == local.root

    def test_resolve_escape(self, local):
        with pytest.raises(ValueError, match="escapes"):
            local.resolve("../outside.txt")
        with pytest.raises(ValueError):
            local.resolve("src/../../outside.txt")


# =============================================================================
# File Operation Tests
# =============================================================================

class TestFileOperations:
    """Tests for the sync file operations."""

    def test_read(self, local):
        result = local._read_file({"filePath": "src/index.ts"})
        assert result["success"]
        assert result["data"]["content"] == "import './components/Sidebar';\n"
        assert result["data"]["lines"] == 2

    def test_read_missing(self, local):
        result = local._read_file({"fileId": "src/nope.ts"})
        assert not result["success"]
        assert "does not exist" in result["error"]

    def test_read_directory(self, local):
        assert not local._read_file({"filePath": "src"})["success"]

    def test_create_then_update(self, local, temp_project):
        created = local._create_file({"name": "Button.tsx", "parentId": "src/components", "content": "a"})
        assert created["data"]["id"] == "src/components/Button.tsx"
        assert not local._create_file({"name": "src/components/Button.tsx"})["success"]

        updated = local._update_file({"fileId": "src/components/Button.tsx", "newContent": "b"})
        assert updated["success"]
        assert (temp_project / "src" / "components" / "Button.tsx").read_text() == "b"

    def test_update_missing_file(self, local):
        result = local._update_file({"fileId": "src/ghost.ts", "newContent": "x"})
        assert not result["success"]

    def test_delete(self, local, temp_project):
        assert local._delete_file({"nodeId": "src/index.ts"})["success"]
        assert not (temp_project / "src" / "index.ts").exists()
        assert not local._delete_file({"nodeId": "src/index.ts"})["success"]

    def test_refuses_to_delete_root(self, local, temp_project):
        result = local._delete_file({"nodeId": "."})
        assert not result["success"]
        assert temp_project.exists()

    def test_rename_and_move(self, local, temp_project):
        local._create_folder({"name": "lib"})
        assert local._rename_file({"nodeId": "src/index.ts", "newName": "main.ts"})["success"]
        moved = local._move_file({"nodeId": "src/main.ts", "newParentId": "lib"})
        assert moved["data"]["id"] == "lib/main.ts"
        assert (temp_project / "lib" / "main.ts").exists()
        assert not local._rename_file({"nodeId": "lib/main.ts", "newName": "../x.ts"})["success"]

    def test_list_skips_dependencies(self, local):
        result = local._list_files({})
        ids = {entry["id"] for entry in result["data"]}
        assert "src/components/Sidebar.tsx" in ids
        assert not any(i.startswith("node_modules") for i in ids)

    def test_list_subfolder(self, local):
        result = local._list_files({"parentId": "src/components"})
        assert result["data"] == [
            {"id": "src/components/Sidebar.tsx", "name": "Sidebar.tsx", "type": "file"},
        ]

    def test_search(self, local):
        assert local._search_files({"query": "sidebar"})["data"] == ["src/components/Sidebar.tsx"]
        assert not local._search_files({})["success"]


# =============================================================================
# Analysis and Utility Tests
# =============================================================================

class TestAnalysisOperations:
    """Tests for the snapshot, self-analysis and utility operations."""

    @pytest.mark.asyncio
    async def test_snapshot_skips_dependencies(self, local):
        files = await local.snapshot()
        assert files == {
            "src/components/Sidebar.tsx": "export const Sidebar = 1;\n",
            "src/index.ts": "import './components/Sidebar';\n",
        }

    def test_snapshot_blanks_binary_files(self, local, temp_project):
        (temp_project / "logo.png").write_bytes(b"\x89PNG\r\n")
        assert local.load_project_files()["logo.png"] == ""

    def test_analyze_component(self, local):
        result = local._self_analyze_component({"filePath": "src/components/Sidebar.tsx"})
        assert result["success"]
        assert result["data"]["exports"] == ["Sidebar"]
        assert result["data"]["dependents"] == ["src/index.ts"]
        assert "Sidebar" in result["data"]["summary"]

        assert not local._self_analyze_component({"filePath": "src/nope.ts"})["success"]
        assert not local._self_analyze_component({})["success"]

    def test_trace_dependency(self, local):
        result = local._self_trace_dependency({"filePath": "src/index.ts", "maxDepth": 2})
        assert result["data"]["upstream"] == ["src/components/Sidebar.tsx"]
        assert result["data"]["downstream"] == []
        assert not local._self_trace_dependency({"filePath": "src/index.ts", "maxDepth": "deep"})["success"]

    def test_map_project(self, local):
        result = local._self_map_project({"includeGraph": False})
        assert result["data"]["total_files"] == 2
        assert "dependency_graph" not in result["data"]
        assert "dependency_graph" in local._self_map_project({})["data"]

    def test_explain_code(self, local):
        result = local._explain_code({"code": "x = 1", "language": "python"})
        assert result["data"]["language"] == "python"
        assert result["data"]["instruction"]
        assert not local._explain_code({})["success"]

    def test_suggest_fix_excerpt(self, local):
        result = local._suggest_fix({"error": "TypeError", "filePath": "src/index.ts", "line": 1})
        assert result["data"]["fileContent"] == "    1> import './components/Sidebar';"
        assert result["data"]["lineNumber"] == 1

        missing = local._suggest_fix({"error": "TypeError", "filePath": "src/nope.ts"})
        assert missing["data"]["fileContent"] == "[File not found]"
        assert not local._suggest_fix({"filePath": "src/index.ts"})["success"]

    def test_git_refuses_option_like_names(self, local):
        assert "Invalid branch name" in local._git_create_branch({"name": "--force"})["error"]
        assert "Invalid branch name" in local._git_create_branch({"name": "x", "from": "-b"})["error"]
        assert not local._git_create_branch({})["success"]
        assert "Invalid branch name" in local._git_push({"branch": "-f"})["error"]


# =============================================================================
# Registration Tests
# =============================================================================

class TestRegistration:
    """Tests for the async executors wired into the risk gate."""

    @pytest.mark.asyncio
    async def test_registered_executors_run(self, temp_project):
        executors = ExecutorRegistry()
        register_local_executors(executors, temp_project)

        assert executors.has("read_file")
        assert executors.has("git_status")
        assert executors.has("self_map_project")
        assert executors.has("git_create_branch")

        advertised = create_default_registry().subset(executors.names())
        for name in ("self_analyze_component", "self_trace_dependency", "self_map_project",
                     "explain_code", "suggest_fix", "git_create_branch", "git_push"):
            assert name in advertised
        assert "git_create_pr" not in advertised
        assert not any(t.name.startswith("github_") for t in advertised)
        assert all(executors.has(t.name) for t in advertised)
        result = await executors.get("read_file")({"filePath": "src/index.ts"})
        assert result["success"]

    @pytest.mark.asyncio
    async def test_escape_becomes_failed_tool_result(self, temp_project):
        executors = ExecutorRegistry()
        register_local_executors(executors, temp_project)
        gate = RiskGate(create_default_registry(), executors, AuditLog())

        result = await gate.execute(ToolCall(id="c1", tool_name="read_file", args={"filePath": "../../etc/passwd"}))

        assert not result.success
        assert "escapes" in result.error
