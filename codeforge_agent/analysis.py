"""
Self-Analysis Engine
====================

Regex-based structure analysis of JavaScript and TypeScript sources.

Everything here works on a project snapshot: a {path: content} mapping with
paths relative to the project root and "/" as the separator. Parsing is
heuristic. It reads import and export statements, guesses what kind of
module a file is and builds the import graph between files. It never
evaluates code.

The engine backs the self-analysis tools, file detection in the observe
phase of OODA cycles, and the import, export and downstream checks run by
verification.

Usage:
    engine = SelfAnalysisEngine()
    files = await local.snapshot()
    analysis = engine.analyze_component("src/components/Sidebar.tsx", files[path], files)
    trace = engine.trace_dependencies("lib/store.ts", files)
"""

import re
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Container, Mapping, Optional

# Returns the current project snapshot
ProjectFilesLoader = Callable[[], Awaitable[dict[str, str]]]

SOURCE_FILE_RE = re.compile(r"\.(ts|tsx|js|jsx|mjs|cjs)$")

# Tried in order when resolving a local import to a file
RESOLVE_SUFFIXES = ("", ".ts", ".tsx", ".js", ".jsx", "/index.ts", "/index.tsx", "/index.js")
# "@/" points at the project root, or at src/ in projects laid out that way
ALIAS_ROOTS = ("", "src/")

MAX_TRACE_DEPTH = 5
MAX_RELATED_FILES = 10


def is_source_file(path: str) -> bool:
    return bool(SOURCE_FILE_RE.search(path))


# =============================================================================
# Import and Export Parsing
# =============================================================================

_IMPORT_FROM_RE = re.compile(
    r"""\bimport\s+(?:type\s+)?"""
    r"""(?:([A-Za-z_$][\w$]*)\s*,?\s*)?"""
    r"""(?:\{([^}]*)\}|\*\s*as\s+([A-Za-z_$][\w$]*))?"""
    r"""\s*from\s*['"]([^'"]+)['"]"""
)
_SIDE_EFFECT_IMPORT_RE = re.compile(r"""\bimport\s*['"]([^'"]+)['"]""")

_DECLARED_EXPORT_RE = re.compile(
    r"\bexport\s+(?:default\s+)?(?:declare\s+)?(?:async\s+)?(?:abstract\s+)?"
    r"(?:function\s*\*?\s*|(?:class|const|let|var|interface|type|enum)\s+)([A-Za-z_$][\w$]*)"
)
_DEFAULT_IDENTIFIER_EXPORT_RE = re.compile(
    r"\bexport\s+default\s+(?!(?:async|function|class|abstract)\b)([A-Za-z_$][\w$]*)\s*;?\s*$",
    re.MULTILINE,
)
_DEFAULT_EXPORT_RE = re.compile(r"\bexport\s+default\b|\bas\s+default\b")
_EXPORT_CLAUSE_RE = re.compile(
    r"""\bexport\s+(?:type\s+)?\{([^}]*)\}(?:\s*from\s*['"]([^'"]+)['"])?"""
)
_EXPORT_ALL_RE = re.compile(
    r"""\bexport\s+\*\s*(?:as\s+([A-Za-z_$][\w$]*)\s*)?from\s*['"]([^'"]+)['"]"""
)
_AS_RE = re.compile(r"\s+as\s+")


@dataclass
class ImportRecord:
    """One import (or re-export) statement."""
    source: str
    symbols: list[str] = field(default_factory=list)
    default: Optional[str] = None
    namespace: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.source.startswith(".") or self.source.startswith("@/")

    @property
    def bound_names(self) -> list[str]:
        """Names this statement brings into the importing file."""
        names = list(self.symbols)
        if self.default:
            names.append(self.default)
        if self.namespace:
            names.append(self.namespace)
        return names

    def to_dict(self) -> dict:
        result = {"source": self.source, "symbols": self.symbols}
        if self.default:
            result["default"] = self.default
        if self.namespace:
            result["namespace"] = self.namespace
        return result


@dataclass
class ExportInfo:
    """Exports of one module."""
    names: list[str] = field(default_factory=list)
    # Exported through `export { a }` or `export default a`; must be defined in the file
    local_names: list[str] = field(default_factory=list)
    has_default: bool = False
    reexports_all: bool = False


def _clause_pairs(clause: Optional[str]) -> list[tuple[str, str]]:
    """Split `a, b as c, type d` into (name, alias) pairs."""
    pairs = []
    for part in (clause or "").split(","):
        part = re.sub(r"^type\s+", "", part.strip())
        if not part:
            continue
        pieces = _AS_RE.split(part, maxsplit=1)
        name = pieces[0].strip()
        alias = pieces[1].strip() if len(pieces) > 1 else name
        if name:
            pairs.append((name, alias))
    return pairs


def parse_imports(content: str) -> list[ImportRecord]:
    """
    Extract import statements and `export ... from` re-exports.

    Named imports record the name the source module exports, so
    `import { a as b }` records "a".
    """
    imports: list[ImportRecord] = []
    for match in _IMPORT_FROM_RE.finditer(content):
        default, named, namespace, source = match.groups()
        imports.append(ImportRecord(
            source=source,
            symbols=[name for name, _ in _clause_pairs(named)],
            default=default,
            namespace=namespace,
        ))

    for match in _EXPORT_CLAUSE_RE.finditer(content):
        if match.group(2):
            imports.append(ImportRecord(
                source=match.group(2),
                symbols=[name for name, _ in _clause_pairs(match.group(1))],
            ))
    for match in _EXPORT_ALL_RE.finditer(content):
        imports.append(ImportRecord(source=match.group(2), namespace=match.group(1)))

    sources = {record.source for record in imports}
    for match in _SIDE_EFFECT_IMPORT_RE.finditer(content):
        if match.group(1) not in sources:
            imports.append(ImportRecord(source=match.group(1)))
            sources.add(match.group(1))
    return imports


def parse_exports(content: str) -> ExportInfo:
    info = ExportInfo(has_default=bool(_DEFAULT_EXPORT_RE.search(content)))

    def add(name: str) -> None:
        if name not in info.names:
            info.names.append(name)

    for match in _DECLARED_EXPORT_RE.finditer(content):
        add(match.group(1))
    for match in _DEFAULT_IDENTIFIER_EXPORT_RE.finditer(content):
        add(match.group(1))
        info.local_names.append(match.group(1))
    for match in _EXPORT_CLAUSE_RE.finditer(content):
        reexport = bool(match.group(2))
        for name, alias in _clause_pairs(match.group(1)):
            add(alias)
            if not reexport and name != "default":
                info.local_names.append(name)
    for match in _EXPORT_ALL_RE.finditer(content):
        if match.group(1):
            add(match.group(1))
        else:
            info.reexports_all = True
    return info


def is_defined(name: str, content: str, imported: Container[str] = ()) -> bool:
    """Whether a module-level name is declared in content or imported into it."""
    if name in imported:
        return True
    escaped = re.escape(name)
    declaration = re.compile(
        rf"(?:function\s*\*?\s*|\b(?:class|const|let|var|interface|type|enum)\s+){escaped}\b"
        rf"|\b(?:const|let|var)\s*[{{\[][^}}\]]*\b{escaped}\b"
    )
    return bool(declaration.search(content))


def resolve_import_path(from_file: str, source: str, files: Container[str]) -> Optional[str]:
    """
    Resolve a local import to a path in files.

    Returns:
        The matching path, or None for package imports and unresolved paths
    """
    if source.startswith("@/"):
        bases = [root + source[2:] for root in ALIAS_ROOTS]
    elif source.startswith("."):
        parts = from_file.split("/")[:-1]
        for part in source.split("/"):
            if part == "..":
                if parts:
                    parts.pop()
            elif part not in (".", ""):
                parts.append(part)
        bases = ["/".join(parts)]
    else:
        return None

    for base in bases:
        for suffix in RESOLVE_SUFFIXES:
            candidate = base + suffix
            if candidate in files:
                return candidate
    return None


# =============================================================================
# Component Heuristics
# =============================================================================

_COMPONENT_FUNCTION_RE = re.compile(r"export\s+(?:default\s+)?function\s+[A-Z]\w*\s*\(")
_PROPS_RE = re.compile(r"interface\s+\w*Props\s*\{([^}]*)\}", re.DOTALL)
_USE_STATE_RE = re.compile(r"const\s+\[(\w+),\s*set\w+\]\s*=\s*useState")
_STORE_HOOK_RE = re.compile(r"\buse(\w+Store)\b")

_CONDITIONAL_RE = re.compile(r"\bif\s*\(|\?\s*[^:.?\s]")
_LOOP_RE = re.compile(r"\bfor\s*\(|\bwhile\s*\(|\.map\(|\.forEach\(|\.reduce\(")
_CALLBACK_RE = re.compile(r"=>|\bfunction\b")


def detect_component_type(file_path: str, content: str) -> str:
    lower = file_path.lower()
    if ".test." in lower or ".spec." in lower or "__tests__" in lower:
        return "test"
    if lower.endswith((".css", ".scss")):
        return "style"
    if "/types" in lower or lower.endswith(".d.ts"):
        return "type_definition"
    if "config" in lower:
        return "config"
    if "/stores/" in lower or "-store" in lower:
        return "store"
    if "/hooks/" in lower or "use-" in lower:
        return "hook"
    if "-service" in lower or "/services/" in lower:
        return "service"
    if "React" in content or (
        _COMPONENT_FUNCTION_RE.search(content)
        and (lower.endswith((".tsx", ".jsx")) or "return (" in content)
    ):
        return "react_component"
    return "utility"


def extract_props(content: str) -> list[str]:
    match = _PROPS_RE.search(content)
    if not match:
        return []
    props = []
    for line in match.group(1).splitlines():
        line = line.strip()
        if not line or line.startswith("//"):
            continue
        name = line.split(":")[0].replace("?", "").strip()
        if name:
            props.append(name)
    return props


def extract_state_usage(content: str) -> list[str]:
    usage = [f"useState:{m.group(1)}" for m in _USE_STATE_RE.finditer(content)]
    usage += [f"zustand:{m.group(1)}" for m in _STORE_HOOK_RE.finditer(content)]
    return list(dict.fromkeys(usage))


def estimate_complexity(content: str) -> str:
    """Rough low/medium/high rating from branch, loop and callback counts."""
    score = (
        len(_CONDITIONAL_RE.findall(content)) * 2
        + len(_LOOP_RE.findall(content)) * 3
        + len(_CALLBACK_RE.findall(content))
        + (10 if content.count("\n") + 1 > 200 else 0)
    )
    if score > 30:
        return "high"
    if score > 12:
        return "medium"
    return "low"


def build_import_index(files: Mapping[str, str]) -> dict[str, list[tuple[str, ImportRecord]]]:
    """Map each file to the (importer, import) pairs that resolve to it."""
    index: dict[str, list[tuple[str, ImportRecord]]] = {}
    for path, content in files.items():
        if not is_source_file(path):
            continue
        for record in parse_imports(content):
            target = resolve_import_path(path, record.source, files)
            if target is not None and target != path:
                index.setdefault(target, []).append((path, record))
    return index


# =============================================================================
# Results
# =============================================================================

@dataclass
class ComponentAnalysis:
    file_path: str
    component_name: str
    type: str
    imports: list[ImportRecord]
    exports: list[str]
    dependencies: list[str]
    dependents: list[str] = field(default_factory=list)
    props: Optional[list[str]] = None
    state_usage: Optional[list[str]] = None
    complexity: str = "low"
    line_count: int = 0

    @property
    def summary(self) -> str:
        return (
            f"{self.component_name} is a {self.type} with {self.line_count} lines "
            f"({self.complexity} complexity). Imports from {len(self.dependencies)} "
            f"local files, exports {len(self.exports)} symbols, "
            f"imported by {len(self.dependents)} files."
        )

    def to_dict(self) -> dict:
        result = {
            "file_path": self.file_path,
            "component_name": self.component_name,
            "type": self.type,
            "imports": [record.to_dict() for record in self.imports],
            "exports": self.exports,
            "dependencies": self.dependencies,
            "dependents": self.dependents,
            "complexity": self.complexity,
            "line_count": self.line_count,
        }
        if self.props is not None:
            result["props"] = self.props
        if self.state_usage is not None:
            result["state_usage"] = self.state_usage
        return result


@dataclass
class DependencyTreeNode:
    file_path: str
    depth: int
    is_circular: bool = False
    children: list["DependencyTreeNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "depth": self.depth,
            "is_circular": self.is_circular,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class DependencyTrace:
    root_file: str
    depth: int
    upstream: list[str]
    downstream: list[str]
    circular_deps: list[str]
    tree: DependencyTreeNode

    @property
    def summary(self) -> str:
        lines = [f"Dependency trace for {self.root_file}", ""]
        lines.append(f"Upstream ({len(self.upstream)} files this file imports from):")
        lines.extend(f"  -> {path}" for path in self.upstream)
        lines.append(f"Downstream ({len(self.downstream)} files that import this file):")
        lines.extend(f"  <- {path}" for path in self.downstream)
        if self.circular_deps:
            lines.append("Circular dependencies:")
            lines.extend(f"  <-> {path}" for path in self.circular_deps)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "root_file": self.root_file,
            "depth": self.depth,
            "upstream": self.upstream,
            "downstream": self.downstream,
            "circular_deps": self.circular_deps,
            "tree": self.tree.to_dict(),
        }


@dataclass
class DependencyNode:
    file_path: str
    imports: list[str]
    exported_symbols: list[str]
    imported_by: list[str] = field(default_factory=list)
    language: str = "unknown"
    size: int = 0


@dataclass
class ProjectMap:
    total_files: int
    total_folders: int
    files_by_extension: dict[str, int]
    dependency_graph: dict[str, DependencyNode]
    entry_points: list[str]
    config_files: list[str]
    component_files: list[str]

    @property
    def summary(self) -> str:
        top = sorted(self.files_by_extension.items(), key=lambda item: (-item[1], item[0]))[:10]
        lines = [
            f"Project map: {self.total_files} files in {self.total_folders} folders",
            "Files by extension:",
            *(f"  .{ext}: {count}" for ext, count in top),
            f"Entry points: {len(self.entry_points)}",
            *(f"  {path}" for path in self.entry_points),
            f"Config files: {len(self.config_files)}",
            *(f"  {path}" for path in self.config_files),
            f"Component files: {len(self.component_files)}",
        ]
        return "\n".join(lines)

    def to_dict(self, include_graph: bool = True) -> dict:
        result = {
            "total_files": self.total_files,
            "total_folders": self.total_folders,
            "files_by_extension": self.files_by_extension,
            "entry_points": self.entry_points,
            "config_files": self.config_files,
            "component_count": len(self.component_files),
        }
        if include_graph:
            result["dependency_graph"] = {
                path: {"imports": node.imports, "imported_by": node.imported_by}
                for path, node in self.dependency_graph.items()
            }
        return result


@dataclass
class RelatedFile:
    file_path: str
    relevance_score: int
    reason: str

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "relevance_score": self.relevance_score,
            "reason": self.reason,
        }


# =============================================================================
# Engine
# =============================================================================

# Issue words mapped to path fragments of the UI areas they usually mean
AREA_KEYWORDS = {
    "sidebar": ("sidebar", "file-explorer", "panel", "activity-bar"),
    "editor": ("editor", "monaco", "tab", "code-editor"),
    "terminal": ("terminal", "console", "output"),
    "header": ("header", "menu-bar", "title-bar", "toolbar"),
    "status": ("status-bar", "footer", "status"),
    "dialog": ("dialog", "modal", "popup"),
    "settings": ("settings", "config", "preferences"),
    "agent": ("agent", "chat", "assistant"),
    "git": ("git", "source-control", "version"),
    "left": ("sidebar", "file-explorer", "activity-bar", "panel"),
    "right": ("panel", "agent", "chat"),
    "bottom": ("terminal", "output", "status-bar", "problems"),
    "top": ("header", "menu-bar", "title-bar", "toolbar"),
    "button": ("button", "btn", "action"),
    "layout": ("layout", "grid", "resize", "split"),
    "واجهة": ("layout", "component", "panel"),
    "يسرى": ("sidebar", "file-explorer", "activity-bar", "panel"),
    "يمنى": ("panel", "agent", "chat"),
    "زاوية": ("corner", "sidebar", "panel", "layout"),
    "أزرار": ("button", "btn", "action", "icon"),
}
UI_WORDS = {"ui", "واجهة", "button", "أزرار", "layout", "style", "css"}
STOP_WORDS = {"the", "and", "for", "with", "not", "does", "doesn't", "this", "that", "when", "from"}

_WORD_SPLIT_RE = re.compile(r"[\s,.;:!?()\[\]{}\"']+")


class SelfAnalysisEngine:
    """
    Analyzes files of a project snapshot and the relationships between them.

    Component analyses are cached per path and content, so repeated calls on
    an unchanged file are cheap and an edited file is always re-analyzed.
    """

    def __init__(self):
        self._cache: dict[tuple[str, int], ComponentAnalysis] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def analyze_component(
        self,
        file_path: str,
        content: str,
        files: Optional[Mapping[str, str]] = None,
    ) -> ComponentAnalysis:
        """
        Analyze one file.

        Args:
            file_path: Path of the file
            content: Its content
            files: Project snapshot; when given, dependents are filled in
        """
        key = (file_path, hash(content))
        analysis = self._cache.get(key)
        if analysis is None:
            analysis = self._analyze(file_path, content)
            self._cache[key] = analysis

        if files is None:
            return replace(analysis, dependents=[])
        return replace(analysis, dependents=self._importers_of(file_path, files))

    def _analyze(self, file_path: str, content: str) -> ComponentAnalysis:
        imports = parse_imports(content)
        component_type = detect_component_type(file_path, content)
        file_name = file_path.rsplit("/", 1)[-1]
        return ComponentAnalysis(
            file_path=file_path,
            component_name=SOURCE_FILE_RE.sub("", file_name),
            type=component_type,
            imports=imports,
            exports=parse_exports(content).names,
            dependencies=[record.source for record in imports if record.is_local],
            props=extract_props(content) if component_type == "react_component" else None,
            state_usage=(
                extract_state_usage(content)
                if component_type in ("react_component", "hook") else None
            ),
            complexity=estimate_complexity(content),
            line_count=content.count("\n") + 1,
        )

    def _importers_of(self, file_path: str, files: Mapping[str, str]) -> list[str]:
        importers = []
        for path, content in files.items():
            if path == file_path or not is_source_file(path):
                continue
            if any(
                resolve_import_path(path, record.source, files) == file_path
                for record in parse_imports(content)
            ):
                importers.append(path)
        return importers

    def _upstream_of(self, file_path: str, files: Mapping[str, str]) -> list[str]:
        upstream = []
        for record in parse_imports(files.get(file_path) or ""):
            resolved = resolve_import_path(file_path, record.source, files)
            if resolved is not None and resolved not in upstream:
                upstream.append(resolved)
        return upstream

    def trace_dependencies(
        self,
        file_path: str,
        files: Mapping[str, str],
        max_depth: int = MAX_TRACE_DEPTH,
    ) -> DependencyTrace:
        """What a file imports, what imports it, and the import tree below it."""
        if file_path not in files:
            return DependencyTrace(file_path, 0, [], [], [], DependencyTreeNode(file_path, 0))

        upstream = self._upstream_of(file_path, files)
        downstream = self._importers_of(file_path, files)
        return DependencyTrace(
            root_file=file_path,
            depth=max_depth,
            upstream=upstream,
            downstream=downstream,
            circular_deps=[path for path in upstream if path in downstream],
            tree=self._build_tree(file_path, files, max_depth, frozenset(), 0),
        )

    def _build_tree(
        self,
        file_path: str,
        files: Mapping[str, str],
        max_depth: int,
        visited: frozenset,
        depth: int,
    ) -> DependencyTreeNode:
        node = DependencyTreeNode(file_path, depth, is_circular=file_path in visited)
        if node.is_circular or depth >= max_depth:
            return node
        visited = visited | {file_path}
        for child in self._upstream_of(file_path, files):
            node.children.append(self._build_tree(child, files, max_depth, visited, depth + 1))
        return node

    def build_project_map(self, files: Mapping[str, str]) -> ProjectMap:
        graph: dict[str, DependencyNode] = {}
        by_extension: dict[str, int] = {}
        folders: set[str] = set()
        entry_points, config_files, component_files = [], [], []

        for path, content in files.items():
            file_name = path.rsplit("/", 1)[-1]
            ext = file_name.rsplit(".", 1)[-1] if "." in file_name else "unknown"
            by_extension[ext] = by_extension.get(ext, 0) + 1

            parts = path.split("/")
            for i in range(1, len(parts)):
                folders.add("/".join(parts[:i]))

            graph[path] = DependencyNode(
                file_path=path,
                imports=[r.source for r in parse_imports(content)] if is_source_file(path) else [],
                exported_symbols=parse_exports(content).names if is_source_file(path) else [],
                language=ext,
                size=len(content),
            )

            if file_name in ("page.tsx", "layout.tsx"):
                entry_points.append(path)
            if ".config." in file_name or file_name in ("package.json", "tsconfig.json"):
                config_files.append(path)
            if "/components/" in f"/{path}" or path.endswith(".tsx"):
                component_files.append(path)

        for target, importers in build_import_index(files).items():
            graph[target].imported_by = [importer for importer, _ in importers]

        return ProjectMap(
            total_files=len(files),
            total_folders=len(folders),
            files_by_extension=by_extension,
            dependency_graph=graph,
            entry_points=entry_points,
            config_files=config_files,
            component_files=component_files,
        )

    def find_related_files(
        self,
        issue: str,
        files: Mapping[str, str],
        max_results: int = MAX_RELATED_FILES,
    ) -> list[RelatedFile]:
        """
        Rank files by how likely they are involved in an issue.

        Path matches weigh most, then UI-area matches, then keyword hits in
        the content.
        """
        keywords = [
            word for word in _WORD_SPLIT_RE.split((issue or "").lower())
            if len(word) > 2 and word not in STOP_WORDS
        ]
        if not keywords:
            return []
        ui_issue = any(word in UI_WORDS for word in keywords)

        results = []
        for path, content in files.items():
            lower_path = path.lower()
            lower_content = content.lower()
            score = 0
            reasons = []

            for keyword in keywords:
                if keyword in lower_path:
                    score += 5
                    reasons.append(f'path contains "{keyword}"')
                for fragment in AREA_KEYWORDS.get(keyword, ()):
                    if fragment != keyword and fragment in lower_path:
                        score += 4
                        reasons.append(f'area "{keyword}" matches "{fragment}"')
                if keyword in lower_content:
                    score += 1

            if score and ui_issue and lower_path.endswith((".tsx", ".css")):
                score += 2
            if score:
                results.append(RelatedFile(path, score, "; ".join(reasons) or "keyword match in content"))

        results.sort(key=lambda r: (-r.relevance_score, r.file_path))
        return results[:max_results]
