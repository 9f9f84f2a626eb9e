"""
Tests for Self-Analysis Engine
==============================

Tests for import and export parsing, path resolution, component analysis,
dependency tracing, project maps and related-file ranking.
"""

import pytest

from codeforge_agent.analysis import (
    SelfAnalysisEngine,
    detect_component_type,
    estimate_complexity,
    is_defined,
    parse_exports,
    parse_imports,
    resolve_import_path,
)


SIDEBAR = "src/components/Sidebar.tsx"
STORE = "src/stores/layout-store.ts"
PAGE = "src/app/page.tsx"

PROJECT = {
    SIDEBAR: (
        "import { useState } from 'react';\n"
        "import { useLayoutStore } from '../stores/layout-store';\n"
        "interface SidebarProps {\n  open: boolean;\n  onToggle?: () => void;\n}\n"
        "export function Sidebar({ open }: SidebarProps) {\n"
        "  const [width, setWidth] = useState(240);\n"
        "  const layout = useLayoutStore();\n"
        "  return <aside>{open ? width : 0}</aside>;\n"
        "}\n"
    ),
    STORE: (
        "import { Sidebar } from '../components/Sidebar';\n"
        "export const useLayoutStore = () => ({ panel: Sidebar });\n"
    ),
    PAGE: (
        "import { Sidebar } from '@/components/Sidebar';\n"
        "export default function Page() {\n  return <Sidebar open />;\n}\n"
    ),
    "package.json": "{}\n",
}


@pytest.fixture
def engine():
    return SelfAnalysisEngine()


# =============================================================================
# Parsing Tests
# =============================================================================

class TestParsing:
    """Tests for import and export parsing."""

    def test_import_forms(self):
        content = (
            "import React, { useState, useEffect as ue } from 'react';\n"
            "import * as utils from '../lib/utils';\n"
            "import type { Props } from './types';\n"
            "import './styles.css';\n"
            "export { helper } from './helper';\n"
            "export * from './constants';\n"
        )
        records = {r.source: r for r in parse_imports(content)}

        assert records["react"].default == "React"
        assert records["react"].symbols == ["useState", "useEffect"]
        assert not records["react"].is_local
        assert records["../lib/utils"].namespace == "utils"
        assert records["./types"].symbols == ["Props"]
        assert records["./styles.css"].bound_names == []
        assert records["./helper"].symbols == ["helper"]
        assert "./constants" in records

    def test_export_forms(self):
        content = (
            "export default function Sidebar() {}\n"
            "export const WIDTH = 240;\n"
            "export interface SidebarProps { open: boolean }\n"
            "function helper() {}\n"
            "export { helper, helper as aliasHelper };\n"
        )
        info = parse_exports(content)
        assert info.names == ["Sidebar", "WIDTH", "SidebarProps", "helper", "aliasHelper"]
        assert info.has_default
        assert set(info.local_names) == {"helper"}
        assert not info.reexports_all

    def test_default_identifier_export(self):
        info = parse_exports("const App = () => null;\nexport default App;\n")
        assert info.names == ["App"]
        assert info.local_names == ["App"]
        assert info.has_default

    def test_reexport_all(self):
        assert parse_exports("export * from './a';\n").reexports_all
        assert parse_exports("export * as ns from './a';\n").names == ["ns"]

    def test_is_defined(self):
        assert is_defined("a", "const a = 1;")
        assert is_defined("f", "async function f() {}")
        assert is_defined("b", "const { a, b } = obj;")
        assert is_defined("x", "", imported={"x"})
        assert not is_defined("a", "const ab = 1;")


# =============================================================================
# Resolution Tests
# =============================================================================

class TestResolution:
    """Tests for resolve_import_path."""

    FILES = {"src/lib/a.ts", "src/components/index.tsx", "lib/b.js"}

    def test_relative(self):
        assert resolve_import_path("src/app/page.tsx", "../lib/a", self.FILES) == "src/lib/a.ts"
        assert resolve_import_path("src/app/page.tsx", "../components", self.FILES) == "src/components/index.tsx"
        assert resolve_import_path("src/x.ts", "./missing", self.FILES) is None

    def test_alias(self):
        assert resolve_import_path("src/x.ts", "@/lib/b", self.FILES) == "lib/b.js"
        assert resolve_import_path("src/x.ts", "@/lib/a", self.FILES) == "src/lib/a.ts"

    def test_packages_are_not_resolved(self):
        assert resolve_import_path("src/x.ts", "react", self.FILES) is None


# =============================================================================
# Heuristic Tests
# =============================================================================

class TestHeuristics:

    def test_component_types(self):
        assert detect_component_type("src/hooks/use-toggle.ts", "") == "hook"
        assert detect_component_type("src/stores/app-store.ts", "") == "store"
        assert detect_component_type("src/a.test.ts", "") == "test"
        assert detect_component_type("src/lib/math.ts", "export const a = 1;") == "utility"
        assert detect_component_type(SIDEBAR, PROJECT[SIDEBAR]) == "react_component"

    def test_complexity(self):
        assert estimate_complexity("const a = 1;") == "low"
        branchy = "if (a) {}\n" * 10 + "items.map(x => x);\n" * 5
        assert estimate_complexity(branchy) == "high"


# =============================================================================
# Engine Tests
# =============================================================================

class TestEngine:
    """Tests for SelfAnalysisEngine."""

    def test_analyze_component(self, engine):
        analysis = engine.analyze_component(SIDEBAR, PROJECT[SIDEBAR], PROJECT)

        assert analysis.component_name == "Sidebar"
        assert analysis.type == "react_component"
        assert analysis.exports == ["Sidebar"]
        assert analysis.dependencies == ["../stores/layout-store"]
        assert sorted(analysis.dependents) == [PAGE, STORE]
        assert analysis.props == ["open", "onToggle"]
        assert analysis.state_usage == ["useState:width", "zustand:LayoutStore"]
        assert "imported by 2 files" in analysis.summary

    def test_analysis_follows_content(self, engine):
        first = engine.analyze_component("src/lib/a.ts", "export const a = 1;\n")
        second = engine.analyze_component("src/lib/a.ts", "export const b = 1;\n")
        assert first.exports == ["a"]
        assert second.exports == ["b"]
        assert first.dependents == []

    def test_trace_dependencies(self, engine):
        trace = engine.trace_dependencies(SIDEBAR, PROJECT)

        assert trace.upstream == [STORE]
        assert sorted(trace.downstream) == [PAGE, STORE]
        assert trace.circular_deps == [STORE]
        store_node = trace.tree.children[0]
        assert store_node.file_path == STORE
        assert store_node.children[0].is_circular
        assert "Circular dependencies" in trace.summary

    def test_trace_missing_file(self, engine):
        trace = engine.trace_dependencies("src/nope.ts", PROJECT)
        assert trace.upstream == []
        assert trace.tree.children == []

    def test_project_map(self, engine):
        project_map = engine.build_project_map(PROJECT)

        assert project_map.total_files == 4
        assert project_map.total_folders == 4
        assert project_map.files_by_extension == {"tsx": 2, "ts": 1, "json": 1}
        assert project_map.entry_points == [PAGE]
        assert project_map.config_files == ["package.json"]
        assert sorted(project_map.dependency_graph[SIDEBAR].imported_by) == [PAGE, STORE]
        assert "dependency_graph" not in project_map.to_dict(include_graph=False)
        assert "4 files in 4 folders" in project_map.summary

    def test_related_files_ranked_by_path(self, engine):
        related = engine.find_related_files("the sidebar is not opening", PROJECT)

        assert related[0].file_path == SIDEBAR
        assert 'path contains "sidebar"' in related[0].reason
        assert engine.find_related_files("", PROJECT) == []

    def test_related_files_by_area(self, engine):
        files = {"src/components/file-explorer.tsx": "", "src/lib/math.ts": ""}
        related = engine.find_related_files("left panel broken", files)
        assert [r.file_path for r in related] == ["src/components/file-explorer.tsx"]
