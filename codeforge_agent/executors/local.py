"""
Local Filesystem Executors
==========================

Tool executors that operate on a project directory on the local disk.

Every path is resolved relative to the project root, and paths that
escape the root are refused. File ids and paths are the same thing here:
an id is the path relative to the root.

Each operation returns a dict with a "success" key, the way the risk gate
expects. Blocking filesystem and git work runs in a worker thread.

The self-analysis and utility tools read from a project snapshot built by
load_project_files(), so they see the same files the OODA engine does.
"""

import asyncio
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from codeforge_agent.analysis import SelfAnalysisEngine
from codeforge_agent.tools.registry import ExecutorRegistry

logger = logging.getLogger(__name__)

# Directories never listed or searched
SKIP_DIRS = {".git", ".codeforge", "node_modules", "__pycache__", ".venv", ".next"}

MAX_LIST_ENTRIES = 500
MAX_SEARCH_RESULTS = 50
GIT_TIMEOUT = 10
GIT_PUSH_TIMEOUT = 60

# Snapshot limits; larger or non-text files are listed with empty content
TEXT_SUFFIXES = {
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".json", ".css", ".scss",
    ".md", ".py", ".html", ".yml", ".yaml", ".txt",
}
MAX_SNAPSHOT_FILES = 2000
MAX_SNAPSHOT_FILE_BYTES = 200_000
SUGGEST_FIX_CONTEXT_LINES = 10


class LocalExecutors:
    """Filesystem and git operations rooted at one project directory."""

    def __init__(self, project_dir: Path, analysis: Optional[SelfAnalysisEngine] = None):
        self.root = Path(project_dir).resolve()
        self.analysis = analysis or SelfAnalysisEngine()

    # =========================================================================
    # Path Handling
    # =========================================================================

    def resolve(self, path: Optional[str]) -> Path:
        """
        Resolve a project-relative path.

        Raises:
            ValueError: If the path points outside the project
        """
        candidate = (self.root / (path or "").lstrip("/\\")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Path escapes the project directory: {path}")
        return candidate

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _walk(self, start: Path):
        for entry in sorted(start.iterdir()):
            if entry.name in SKIP_DIRS:
                continue
            yield entry
            if entry.is_dir():
                yield from self._walk(entry)

    # =========================================================================
    # Sync Operations
    # =========================================================================

    def _list_files(self, args: dict) -> dict:
        folder = self.resolve(args.get("parentId"))
        if not folder.is_dir():
            return {"success": False, "error": f"Not a folder: {args.get('parentId')}"}

        entries = []
        for entry in self._walk(folder):
            entries.append({
                "id": self.relative(entry),
                "name": entry.name,
                "type": "folder" if entry.is_dir() else "file",
            })
            if len(entries) >= MAX_LIST_ENTRIES:
                break
        return {"success": True, "data": entries}

    def _read_file(self, args: dict) -> dict:
        path_arg = args.get("filePath") or args.get("fileId")
        if not path_arg:
            return {"success": False, "error": "fileId or filePath is required"}

        path = self.resolve(path_arg)
        if not path.exists():
            return {"success": False, "error": f"File does not exist: {path_arg}"}
        if path.is_dir():
            return {"success": False, "error": f"Path is a directory, not a file: {path_arg}"}

        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            return {"success": False, "error": f"Could not decode file as utf-8: {e}"}

        return {
            "success": True,
            "data": {
                "id": self.relative(path),
                "name": path.name,
                "content": content,
                "size": len(content),
                "lines": content.count("\n") + 1,
            },
        }

    def _search_files(self, args: dict) -> dict:
        query = str(args.get("query") or "").lower()
        if not query:
            return {"success": False, "error": "query is required"}

        matches = [
            self.relative(entry)
            for entry in self._walk(self.root)
            if entry.is_file() and query in entry.name.lower()
        ]
        return {"success": True, "data": matches[:MAX_SEARCH_RESULTS]}

    def _create_file(self, args: dict) -> dict:
        name = args.get("name")
        if not name:
            return {"success": False, "error": "name is required"}

        path = self.resolve(str(Path(args.get("parentId") or "") / name))
        if path.exists():
            return {"success": False, "error": f"File already exists: {self.relative(path)}"}

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(args.get("content") or "", encoding="utf-8")
        return {"success": True, "data": {"id": self.relative(path), "name": path.name}}

    def _update_file(self, args: dict) -> dict:
        path_arg = args.get("fileId")
        if not path_arg:
            return {"success": False, "error": "fileId is required"}

        path = self.resolve(path_arg)
        if not path.is_file():
            return {"success": False, "error": f"File does not exist: {path_arg}"}

        content = args.get("newContent") or ""
        path.write_text(content, encoding="utf-8")
        return {"success": True, "data": {"id": self.relative(path), "size": len(content)}}

    def _create_folder(self, args: dict) -> dict:
        name = args.get("name")
        if not name:
            return {"success": False, "error": "name is required"}

        path = self.resolve(str(Path(args.get("parentId") or "") / name))
        path.mkdir(parents=True, exist_ok=True)
        return {"success": True, "data": {"id": self.relative(path), "name": path.name}}

    def _delete_file(self, args: dict) -> dict:
        path_arg = args.get("nodeId")
        if not path_arg:
            return {"success": False, "error": "nodeId is required"}

        path = self.resolve(path_arg)
        if path == self.root:
            return {"success": False, "error": "Refusing to delete the project root"}
        if not path.exists():
            return {"success": False, "error": f"Path does not exist: {path_arg}"}

        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        return {"success": True, "data": {"deleted": path_arg}}

    def _rename_file(self, args: dict) -> dict:
        path_arg, new_name = args.get("nodeId"), args.get("newName")
        if not path_arg or not new_name:
            return {"success": False, "error": "nodeId and newName are required"}
        if "/" in new_name or "\\" in new_name:
            return {"success": False, "error": f"Invalid name: {new_name}"}

        path = self.resolve(path_arg)
        if not path.exists():
            return {"success": False, "error": f"Path does not exist: {path_arg}"}

        target = path.with_name(new_name)
        if target.exists():
            return {"success": False, "error": f"Target already exists: {self.relative(target)}"}
        path.rename(target)
        return {"success": True, "data": {"id": self.relative(target)}}

    def _move_file(self, args: dict) -> dict:
        path_arg = args.get("nodeId")
        if not path_arg:
            return {"success": False, "error": "nodeId is required"}

        path = self.resolve(path_arg)
        if not path.exists():
            return {"success": False, "error": f"Path does not exist: {path_arg}"}

        destination = self.resolve(args.get("newParentId"))
        if not destination.is_dir():
            return {"success": False, "error": f"Not a folder: {args.get('newParentId')}"}

        target = destination / path.name
        if target.exists():
            return {"success": False, "error": f"Target already exists: {self.relative(target)}"}
        shutil.move(str(path), str(target))
        return {"success": True, "data": {"id": self.relative(target)}}

    def _git(self, *command: str, timeout: int = GIT_TIMEOUT) -> dict:
        try:
            result = subprocess.run(
                ["git", *command],
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            return {"success": False, "error": "git is not installed"}
        except subprocess.TimeoutExpired:
            return {"success": False, "error": f"git {command[0]} timed out"}

        if result.returncode != 0:
            return {"success": False, "error": result.stderr.strip() or f"git {command[0]} failed"}
        return {"success": True, "data": result.stdout}

    def _git_status(self, args: dict) -> dict:
        result = self._git("status", "--porcelain")
        if not result["success"]:
            return result
        changes = [
            {"status": line[:2].strip(), "path": line[3:]}
            for line in result["data"].splitlines()
            if line.strip()
        ]
        return {"success": True, "data": changes}

    def _git_diff(self, args: dict) -> dict:
        path = args.get("path")
        if path:
            self.resolve(path)
            return self._git("diff", "--", path)
        return self._git("diff")

    def _git_stage(self, args: dict) -> dict:
        paths = args.get("paths") or ["."]
        for path in paths:
            self.resolve(path)
        return self._git("add", "--", *paths)

    def _git_commit(self, args: dict) -> dict:
        message = args.get("message")
        if not message:
            return {"success": False, "error": "message is required"}
        return self._git("commit", "-m", message)

    def _git_create_branch(self, args: dict) -> dict:
        name, base = args.get("name"), args.get("from")
        if not name:
            return {"success": False, "error": "name is required"}
        for ref in (name, base):
            if ref and str(ref).startswith("-"):
                return {"success": False, "error": f"Invalid branch name: {ref}"}

        command = ["checkout", "-b", name] + ([base] if base else [])
        result = self._git(*command)
        if not result["success"]:
            return result
        return {"success": True, "data": {"branch": name, "from": base}}

    def _git_push(self, args: dict) -> dict:
        branch = args.get("branch")
        if branch and str(branch).startswith("-"):
            return {"success": False, "error": f"Invalid branch name: {branch}"}
        if branch:
            return self._git("push", "-u", "origin", branch, timeout=GIT_PUSH_TIMEOUT)
        return self._git("push", timeout=GIT_PUSH_TIMEOUT)

    def _get_project_context(self, args: dict) -> dict:
        files = [self.relative(e) for e in self._walk(self.root) if e.is_file()]
        branch = self._git("rev-parse", "--abbrev-ref", "HEAD")
        return {
            "success": True,
            "data": {
                "name": self.root.name,
                "files": files[:MAX_LIST_ENTRIES],
                "file_count": len(files),
                "branch": branch["data"].strip() if branch["success"] else None,
            },
        }

    # =========================================================================
    # Project Snapshot
    # =========================================================================

    def load_project_files(self) -> dict[str, str]:
        """
        Read the project into a {path: content} snapshot.

        Files that are not text, too large or undecodable map to "".
        """
        files: dict[str, str] = {}
        for entry in self._walk(self.root):
            if not entry.is_file():
                continue
            if len(files) >= MAX_SNAPSHOT_FILES:
                logger.warning("Project snapshot truncated at %d files", MAX_SNAPSHOT_FILES)
                break
            content = ""
            if entry.suffix.lower() in TEXT_SUFFIXES and entry.stat().st_size <= MAX_SNAPSHOT_FILE_BYTES:
                try:
                    content = entry.read_text(encoding="utf-8")
                except UnicodeDecodeError:
                    logger.debug("Skipping undecodable file %s", entry)
            files[self.relative(entry)] = content
        return files

    async def snapshot(self) -> dict[str, str]:
        return await asyncio.to_thread(self.load_project_files)

    # =========================================================================
    # Analysis and Utility Operations
    # =========================================================================

    def _self_analyze_component(self, args: dict) -> dict:
        path_arg = args.get("filePath")
        if not path_arg:
            return {"success": False, "error": "filePath is required"}
        path = self.relative(self.resolve(path_arg))

        files = self.load_project_files()
        if path not in files:
            return {"success": False, "error": f"File not found: {path_arg}"}

        analysis = self.analysis.analyze_component(path, files[path], files)
        return {"success": True, "data": {**analysis.to_dict(), "summary": analysis.summary}}

    def _self_trace_dependency(self, args: dict) -> dict:
        path_arg = args.get("filePath")
        if not path_arg:
            return {"success": False, "error": "filePath is required"}
        path = self.relative(self.resolve(path_arg))

        files = self.load_project_files()
        if path not in files:
            return {"success": False, "error": f"File not found: {path_arg}"}

        try:
            max_depth = int(args.get("maxDepth") or 5)
        except (TypeError, ValueError):
            return {"success": False, "error": f"Invalid maxDepth: {args.get('maxDepth')}"}

        trace = self.analysis.trace_dependencies(path, files, max_depth)
        return {"success": True, "data": {**trace.to_dict(), "summary": trace.summary}}

    def _self_map_project(self, args: dict) -> dict:
        include_graph = args.get("includeGraph")
        project_map = self.analysis.build_project_map(self.load_project_files())
        return {
            "success": True,
            "data": {
                **project_map.to_dict(include_graph=include_graph is not False),
                "summary": project_map.summary,
            },
        }

    def _explain_code(self, args: dict) -> dict:
        code = args.get("code")
        if not code:
            return {"success": False, "error": "code is required"}
        language = args.get("language") or "unknown"
        return {
            "success": True,
            "data": {
                "code": code,
                "language": language,
                "instruction": (
                    "Explain what this code does step by step, then point out "
                    "any bugs or risky patterns."
                ),
            },
        }

    def _suggest_fix(self, args: dict) -> dict:
        error = args.get("error")
        if not error:
            return {"success": False, "error": "error is required"}

        path_arg = args.get("filePath")
        line = args.get("line")
        file_content = None
        if path_arg:
            result = self._read_file({"filePath": path_arg})
            file_content = result["data"]["content"] if result["success"] else "[File not found]"
            if result["success"] and isinstance(line, (int, float)) and line >= 1:
                lines = file_content.splitlines()
                start = max(int(line) - 1 - SUGGEST_FIX_CONTEXT_LINES, 0)
                end = int(line) + SUGGEST_FIX_CONTEXT_LINES
                file_content = "\n".join(
                    f"{number:>5}{'>' if number == int(line) else ' '} {text}"
                    for number, text in enumerate(lines[start:end], start + 1)
                )

        return {
            "success": True,
            "data": {
                "error": error,
                "filePath": path_arg,
                "lineNumber": line,
                "fileContent": file_content,
                "instruction": "Find the cause of this error and suggest a minimal fix.",
            },
        }

    # =========================================================================
    # Registration
    # =========================================================================

    def operations(self) -> dict:
        return {
            "list_files": self._list_files,
            "read_file": self._read_file,
            "search_files": self._search_files,
            "create_file": self._create_file,
            "update_file": self._update_file,
            "create_folder": self._create_folder,
            "delete_file": self._delete_file,
            "rename_file": self._rename_file,
            "move_file": self._move_file,
            "git_status": self._git_status,
            "git_diff": self._git_diff,
            "git_stage": self._git_stage,
            "git_commit": self._git_commit,
            "git_create_branch": self._git_create_branch,
            "git_push": self._git_push,
            "get_project_context": self._get_project_context,
            "explain_code": self._explain_code,
            "suggest_fix": self._suggest_fix,
            "self_analyze_component": self._self_analyze_component,
            "self_trace_dependency": self._self_trace_dependency,
            "self_map_project": self._self_map_project,
        }

    def executors(self) -> dict:
        """Async executors, one per supported tool."""
        return {name: _in_thread(op) for name, op in self.operations().items()}


def _in_thread(operation):
    async def executor(args: dict) -> dict:
        return await asyncio.to_thread(operation, args)

    executor.__name__ = operation.__name__.lstrip("_")
    return executor


def register_local_executors(
    executors: ExecutorRegistry,
    project_dir: Path,
    analysis: Optional[SelfAnalysisEngine] = None,
) -> LocalExecutors:
    """Register local filesystem, git, analysis and utility executors for a project."""
    local = LocalExecutors(project_dir, analysis)
    executors.register_many(local.executors())
    return local
