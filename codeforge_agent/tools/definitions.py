"""
Built-in Tool Definitions
=========================

The tools exposed to the model, grouped by category. Arguments that carry a
file location use the keys path, filePath, fileId, nodeId or paths so the
risk gate can list affected files in approval prompts.
"""

from typing import Any, Optional

from codeforge_agent.models import RiskLevel, ToolCategory, ToolDefinition


def _param(type_: str, description: str, **extra: Any) -> dict:
    return {"type": type_, "description": description, **extra}


def _tool(
    name: str,
    description: str,
    risk_level: RiskLevel,
    category: ToolCategory,
    properties: Optional[dict] = None,
    required: Optional[list[str]] = None,
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        parameters={
            "type": "object",
            "properties": properties or {},
            "required": required or [],
        },
        risk_level=risk_level,
        category=category,
    )


_OWNER = _param("string", "Repository owner (user or organization).")
_REPO = _param("string", "Repository name.")


# =============================================================================
# Filesystem
# =============================================================================

FILE_TOOLS: list[ToolDefinition] = [
    _tool(
        "list_files",
        "List files and folders in the project, or the children of one folder. "
        "Returns names, paths, types and sizes.",
        RiskLevel.AUTO, ToolCategory.FILESYSTEM,
        {"parentId": _param("string", "Folder to list. Omit for the project root.")},
    ),
    _tool(
        "read_file",
        "Read a file by id or path. Returns its content and metadata.",
        RiskLevel.AUTO, ToolCategory.FILESYSTEM,
        {
            "fileId": _param("string", "Id of the file to read."),
            "filePath": _param("string", "Path of the file to read (alternative to fileId)."),
        },
    ),
    _tool(
        "search_files",
        "Search for files whose name matches a query.",
        RiskLevel.AUTO, ToolCategory.FILESYSTEM,
        {"query": _param("string", "Text to match against file names.")},
        ["query"],
    ),
    _tool(
        "create_file",
        "Create a new file with the given name and content inside a parent folder.",
        RiskLevel.NOTIFY, ToolCategory.FILESYSTEM,
        {
            "name": _param("string", "File name with extension, e.g. \"index.ts\"."),
            "parentId": _param("string", "Parent folder. Null for the project root.", nullable=True),
            "content": _param("string", "Initial file content."),
            "language": _param("string", "Programming language of the file."),
        },
        ["name", "content"],
    ),
    _tool(
        "update_file",
        "Replace the content of an existing file.",
        RiskLevel.NOTIFY, ToolCategory.FILESYSTEM,
        {
            "fileId": _param("string", "Id or path of the file to update."),
            "newContent": _param("string", "The full new content."),
        },
        ["fileId", "newContent"],
    ),
    _tool(
        "create_folder",
        "Create a new folder.",
        RiskLevel.NOTIFY, ToolCategory.FILESYSTEM,
        {
            "name": _param("string", "Folder name."),
            "parentId": _param("string", "Parent folder. Null for the project root.", nullable=True),
        },
        ["name"],
    ),
    _tool(
        "delete_file",
        "Delete a file or folder with all its children. Destructive: requires confirmation.",
        RiskLevel.CONFIRM, ToolCategory.FILESYSTEM,
        {"nodeId": _param("string", "Id or path of the file or folder to delete.")},
        ["nodeId"],
    ),
    _tool(
        "rename_file",
        "Rename a file or folder.",
        RiskLevel.NOTIFY, ToolCategory.FILESYSTEM,
        {
            "nodeId": _param("string", "Id or path of the node to rename."),
            "newName": _param("string", "The new name."),
        },
        ["nodeId", "newName"],
    ),
    _tool(
        "move_file",
        "Move a file or folder under a different parent folder.",
        RiskLevel.NOTIFY, ToolCategory.FILESYSTEM,
        {
            "nodeId": _param("string", "Id or path of the node to move."),
            "newParentId": _param("string", "New parent folder. Null for the project root.", nullable=True),
        },
        ["nodeId"],
    ),
]


# =============================================================================
# Git
# =============================================================================

GIT_TOOLS: list[ToolDefinition] = [
    _tool(
        "git_status",
        "Show which files are modified, staged or untracked.",
        RiskLevel.AUTO, ToolCategory.GIT,
    ),
    _tool(
        "git_diff",
        "Show the diff of one file or of all modified files.",
        RiskLevel.AUTO, ToolCategory.GIT,
        {"path": _param("string", "File to diff. Omit for all files.")},
    ),
    _tool(
        "git_stage",
        "Stage files for the next commit.",
        RiskLevel.NOTIFY, ToolCategory.GIT,
        {"paths": _param("array", "Paths to stage. Use [\".\"] for everything.", items={"type": "string"})},
        ["paths"],
    ),
    _tool(
        "git_commit",
        "Commit the staged changes.",
        RiskLevel.NOTIFY, ToolCategory.GIT,
        {"message": _param("string", "Commit message.")},
        ["message"],
    ),
    _tool(
        "git_push",
        "Push commits to the remote. Requires confirmation.",
        RiskLevel.CONFIRM, ToolCategory.GIT,
        {"branch": _param("string", "Branch to push. Defaults to the current branch.")},
    ),
    _tool(
        "git_create_branch",
        "Create a new branch from the current branch or a given base.",
        RiskLevel.NOTIFY, ToolCategory.GIT,
        {
            "name": _param("string", "Name of the new branch."),
            "from": _param("string", "Base branch. Defaults to the current branch."),
        },
        ["name"],
    ),
    _tool(
        "git_create_pr",
        "Open a pull request on GitHub. Requires confirmation.",
        RiskLevel.CONFIRM, ToolCategory.GIT,
        {
            "title": _param("string", "Pull request title."),
            "body": _param("string", "Pull request description."),
            "base": _param("string", "Branch to merge into, e.g. \"main\"."),
            "head": _param("string", "Branch containing the changes."),
        },
        ["title", "base", "head"],
    ),
]


# =============================================================================
# GitHub
# =============================================================================

GITHUB_TOOLS: list[ToolDefinition] = [
    _tool(
        "github_create_repo",
        "Create a new GitHub repository, optionally initialized with a README and .gitignore.",
        RiskLevel.CONFIRM, ToolCategory.GITHUB,
        {
            "name": _param("string", "Repository name."),
            "description": _param("string", "Short description."),
            "private": _param("boolean", "Create a private repository. Defaults to false."),
            "autoInit": _param("boolean", "Initialize with a README. Defaults to true."),
            "gitignoreTemplate": _param("string", "Gitignore template, e.g. \"Python\"."),
        },
        ["name"],
    ),
    _tool(
        "github_list_repos",
        "List repositories of the authenticated user.",
        RiskLevel.AUTO, ToolCategory.GITHUB,
        {
            "sort": _param("string", "created, updated, pushed or full_name. Defaults to updated."),
            "perPage": _param("number", "Number of repositories to return (max 100)."),
        },
    ),
    _tool(
        "github_push_file",
        "Create or update one file in a repository.",
        RiskLevel.CONFIRM, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "path": _param("string", "File path inside the repository."),
            "content": _param("string", "Plain text content."),
            "message": _param("string", "Commit message."),
            "branch": _param("string", "Target branch. Defaults to main."),
        },
        ["owner", "repo", "path", "content", "message"],
    ),
    _tool(
        "github_push_files",
        "Push several files in a single commit.",
        RiskLevel.CONFIRM, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "files": _param(
                "array",
                "Files to push.",
                items={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "File path inside the repository."},
                        "content": {"type": "string", "description": "File content."},
                    },
                    "required": ["path", "content"],
                },
            ),
            "message": _param("string", "Commit message."),
            "branch": _param("string", "Target branch. Defaults to main."),
        },
        ["owner", "repo", "files", "message"],
    ),
    _tool(
        "github_create_branch",
        "Create a branch in a repository from an existing branch.",
        RiskLevel.NOTIFY, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "branch": _param("string", "Name of the new branch."),
            "fromBranch": _param("string", "Source branch. Defaults to main."),
        },
        ["owner", "repo", "branch"],
    ),
    _tool(
        "github_list_branches",
        "List the branches of a repository.",
        RiskLevel.AUTO, ToolCategory.GITHUB,
        {"owner": _OWNER, "repo": _REPO},
        ["owner", "repo"],
    ),
    _tool(
        "github_create_pull_request",
        "Open a pull request in a repository. Requires confirmation.",
        RiskLevel.CONFIRM, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "title": _param("string", "Pull request title."),
            "body": _param("string", "Pull request description."),
            "head": _param("string", "Branch containing the changes."),
            "base": _param("string", "Branch to merge into."),
        },
        ["owner", "repo", "title", "head", "base"],
    ),
    _tool(
        "github_list_pull_requests",
        "List pull requests of a repository.",
        RiskLevel.AUTO, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "state": _param("string", "open, closed or all. Defaults to open."),
        },
        ["owner", "repo"],
    ),
    _tool(
        "github_create_issue",
        "Open an issue in a repository.",
        RiskLevel.NOTIFY, ToolCategory.GITHUB,
        {
            "owner": _OWNER,
            "repo": _REPO,
            "title": _param("string", "Issue title."),
            "body": _param("string", "Issue description."),
            "labels": _param("array", "Labels to apply.", items={"type": "string"}),
        },
        ["owner", "repo", "title"],
    ),
    _tool(
        "github_get_repo_info",
        "Get metadata of a repository: default branch, visibility, stars and so on.",
        RiskLevel.AUTO, ToolCategory.GITHUB,
        {"owner": _OWNER, "repo": _REPO},
        ["owner", "repo"],
    ),
]


# =============================================================================
# Utility
# =============================================================================

UTILITY_TOOLS: list[ToolDefinition] = [
    _tool(
        "get_project_context",
        "Summarize the project: file count, folder structure, dependencies and scripts.",
        RiskLevel.AUTO, ToolCategory.UTILITY,
    ),
    _tool(
        "explain_code",
        "Prepare structured context for explaining a code snippet.",
        RiskLevel.AUTO, ToolCategory.UTILITY,
        {
            "code": _param("string", "The code to explain."),
            "language": _param("string", "Language of the snippet."),
        },
        ["code"],
    ),
    _tool(
        "suggest_fix",
        "Collect an error message and the surrounding code so a fix can be suggested.",
        RiskLevel.AUTO, ToolCategory.UTILITY,
        {
            "error": _param("string", "Error message or stack trace."),
            "filePath": _param("string", "File where the error occurred."),
            "line": _param("number", "Line number of the error."),
        },
        ["error"],
    ),
]


# =============================================================================
# Self-Improvement
# =============================================================================

SELF_IMPROVE_TOOLS: list[ToolDefinition] = [
    _tool(
        "self_analyze_component",
        "Analyze one source file of the IDE itself: kind, imports, exports, "
        "dependents and size. Use before modifying a file.",
        RiskLevel.AUTO, ToolCategory.SELF_IMPROVE,
        {"filePath": _param("string", "Path relative to the project root.")},
        ["filePath"],
    ),
    _tool(
        "self_trace_dependency",
        "Trace what a file imports and what imports it, flagging circular dependencies.",
        RiskLevel.AUTO, ToolCategory.SELF_IMPROVE,
        {
            "filePath": _param("string", "Path relative to the project root."),
            "maxDepth": _param("number", "Maximum depth to trace. Defaults to 5."),
        },
        ["filePath"],
    ),
    _tool(
        "self_map_project",
        "Map the project layout: files by extension, entry points, config files and the dependency graph.",
        RiskLevel.AUTO, ToolCategory.SELF_IMPROVE,
        {"includeGraph": _param("boolean", "Include the full dependency graph. Defaults to true.")},
    ),
]


ALL_TOOLS: list[ToolDefinition] = (
    FILE_TOOLS + GIT_TOOLS + GITHUB_TOOLS + UTILITY_TOOLS + SELF_IMPROVE_TOOLS
)
