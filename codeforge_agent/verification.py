"""
Verification Checks
===================

Post-change checks run by the verify phase of a self-improvement cycle.

Each check inspects the set of applied changes against the re-read file
contents and returns a VerificationCheck. A cycle passes verification only
when every check passes.

Checks:
- file_existence: every created or edited file can be read back
- import_validity: local imports of changed files resolve to project files
- export_consistency: names a changed file re-exports are defined in it
- protected_paths: no protected path was edited or deleted
- scope_integrity: edits and deletes stay inside the declared scope
- syntax_sanity: bracket balance in code files, per-language comments and strings
- downstream_impact: files importing a changed file still find what they import

import_validity and downstream_impact need the post-change project snapshot.
Without one they pass with a note that they were skipped.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional

from codeforge_agent.analysis import (
    build_import_index,
    is_defined,
    is_source_file,
    parse_exports,
    parse_imports,
    resolve_import_path,
)
from codeforge_agent.config import is_protected_path

_PAIRS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = set(_PAIRS.values())


@dataclass
class FileChange:
    """One change applied by the act phase."""
    file_path: str
    change_type: str  # create, edit, delete
    # Content before and after the change; used to undo it
    old_content: Optional[str] = None
    new_content: Optional[str] = None


@dataclass
class VerificationCheck:
    name: str
    passed: bool
    details: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "passed": self.passed, "details": self.details}


@dataclass
class VerificationResult:
    passed: bool
    checks: list[VerificationCheck] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def failed_checks(self) -> list[VerificationCheck]:
        return [c for c in self.checks if not c.passed]

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "checks": [c.to_dict() for c in self.checks],
            "reason": self.reason,
        }


# =============================================================================
# Lexical Syntax
# =============================================================================

@dataclass(frozen=True)
class LexicalSyntax:
    """Comment and string delimiters the bracket scan must skip over."""
    line_comments: tuple[str, ...] = ()
    block_comment: Optional[tuple[str, str]] = None
    # Longer delimiters first, so a triple quote wins over a single one
    quotes: tuple[str, ...] = ()


C_STYLE = LexicalSyntax(line_comments=("//",), block_comment=("/*", "*/"), quotes=("'", '"', "`"))
PYTHON = LexicalSyntax(line_comments=("#",), quotes=('"""', "'''", "'", '"'))
CSS = LexicalSyntax(block_comment=("/*", "*/"), quotes=("'", '"'))
JSON = LexicalSyntax(quotes=('"',))

SYNTAX_BY_EXTENSION = {
    "ts": C_STYLE,
    "tsx": C_STYLE,
    "js": C_STYLE,
    "jsx": C_STYLE,
    "mjs": C_STYLE,
    "cjs": C_STYLE,
    "json": JSON,
    "py": PYTHON,
    "css": CSS,
}


def syntax_for(file_path: str) -> Optional[LexicalSyntax]:
    """Lexical syntax for a code file, None for files the bracket scan skips."""
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    return SYNTAX_BY_EXTENSION.get(name.rsplit(".", 1)[-1].lower())


def _starts_with_any(content: str, i: int, tokens) -> Optional[str]:
    for token in tokens:
        if content.startswith(token, i):
            return token
    return None


def check_bracket_balance(
    content: str,
    file_path: str,
    syntax: Optional[LexicalSyntax] = None,
) -> list[str]:
    """
    Report unbalanced brackets, ignoring strings and comments.

    Args:
        content: File content
        file_path: Path used in messages and to pick the syntax
        syntax: Comment and string rules; defaults to the file's language,
            falling back to C-style

    Returns:
        One message per problem, empty when balanced
    """
    syntax = syntax or syntax_for(file_path) or C_STYLE
    block_start, block_end = syntax.block_comment or (None, None)

    issues: list[str] = []
    stack: list[tuple[str, int]] = []
    in_string: Optional[str] = None
    in_block_comment = False
    in_line_comment = False
    line = 1
    i = 0
    length = len(content)

    while i < length:
        c = content[i]

        if c == "\n":
            line += 1
            in_line_comment = False
        elif in_line_comment:
            pass
        elif in_block_comment:
            if content.startswith(block_end, i):
                in_block_comment = False
                i += len(block_end)
                continue
        elif in_string:
            if c == "\\":
                if content.startswith("\n", i + 1):
                    line += 1
                i += 2
                continue
            if content.startswith(in_string, i):
                i += len(in_string)
                in_string = None
                continue
        elif _starts_with_any(content, i, syntax.line_comments):
            in_line_comment = True
        elif block_start and content.startswith(block_start, i):
            in_block_comment = True
            i += len(block_start)
            continue
        elif _starts_with_any(content, i, syntax.quotes):
            in_string = _starts_with_any(content, i, syntax.quotes)
            i += len(in_string)
            continue
        elif c in _PAIRS:
            stack.append((c, line))
        elif c in _CLOSERS:
            if not stack:
                issues.append(f"{file_path}:{line} unexpected '{c}' with no matching opener")
            else:
                opener, opened_at = stack.pop()
                if _PAIRS[opener] != c:
                    issues.append(
                        f"{file_path}:{line} mismatched '{c}', expected "
                        f"'{_PAIRS[opener]}' (opened at line {opened_at})"
                    )
        i += 1

    for opener, opened_at in stack:
        issues.append(f"{file_path}:{opened_at} unclosed '{opener}'")
    return issues


# =============================================================================
# Individual Checks
# =============================================================================

def _touched_paths(changes: list[FileChange], *change_types: str) -> list[str]:
    """Distinct paths of the given change types, in first-change order."""
    paths = [c.file_path for c in changes if c.change_type in change_types]
    return list(dict.fromkeys(paths))


def _final_paths(changes: list[FileChange]) -> list[str]:
    """Distinct changed paths that still exist after all changes."""
    final: dict[str, str] = {}
    for change in changes:
        final[change.file_path] = change.change_type
    return [path for path, change_type in final.items() if change_type != "delete"]


def check_file_existence(changes: list[FileChange], contents: dict[str, str]) -> VerificationCheck:
    missing = [path for path in _final_paths(changes) if path not in contents]
    return VerificationCheck(
        name="file_existence",
        passed=not missing,
        details=(
            f"All {len(changes)} modified files exist" if not missing
            else f"Missing files: {', '.join(missing)}"
        ),
    )


def check_import_validity(
    changes: list[FileChange],
    contents: dict[str, str],
    project_files: Optional[Mapping[str, str]],
) -> VerificationCheck:
    if project_files is None:
        return VerificationCheck("import_validity", True, "Skipped: no project snapshot")

    broken = []
    for path in _final_paths(changes):
        if not is_source_file(path) or path not in contents:
            continue
        for record in parse_imports(contents[path]):
            if record.is_local and resolve_import_path(path, record.source, project_files) is None:
                broken.append(f"{path} imports '{record.source}'")
    return VerificationCheck(
        name="import_validity",
        passed=not broken,
        details="All local imports resolve" if not broken else f"Unresolved imports: {'; '.join(broken)}",
    )


def check_export_consistency(changes: list[FileChange], contents: dict[str, str]) -> VerificationCheck:
    problems = []
    for path in _final_paths(changes):
        if not is_source_file(path) or path not in contents:
            continue
        content = contents[path]
        imported = {
            name for record in parse_imports(content) for name in record.bound_names
        }
        for name in parse_exports(content).local_names:
            if not is_defined(name, content, imported):
                problems.append(f"{path} exports undefined '{name}'")
    return VerificationCheck(
        name="export_consistency",
        passed=not problems,
        details="All exports are defined" if not problems else f"Export issues: {'; '.join(problems)}",
    )


def check_protected_paths(changes: list[FileChange]) -> VerificationCheck:
    violations = [
        path for path in _touched_paths(changes, "edit", "delete")
        if is_protected_path(path)
    ]
    return VerificationCheck(
        name="protected_paths",
        passed=not violations,
        details=(
            "No protected paths were modified" if not violations
            else f"Modified protected paths: {', '.join(violations)}"
        ),
    )


def check_scope_integrity(changes: list[FileChange], scope: set[str]) -> VerificationCheck:
    out_of_scope = [
        path for path in _touched_paths(changes, "edit", "delete")
        if path not in scope
    ]
    return VerificationCheck(
        name="scope_integrity",
        passed=not out_of_scope,
        details=(
            f"All changes within declared scope ({len(scope)} files)" if not out_of_scope
            else f"Out-of-scope modifications: {', '.join(out_of_scope)}"
        ),
    )


def check_syntax_sanity(changes: list[FileChange], contents: dict[str, str]) -> VerificationCheck:
    errors: list[str] = []
    for path in _final_paths(changes):
        syntax = syntax_for(path)
        content = contents.get(path)
        if syntax is not None and content:
            errors.extend(check_bracket_balance(content, path, syntax))
    return VerificationCheck(
        name="syntax_sanity",
        passed=not errors,
        details=(
            "All files pass basic syntax check" if not errors
            else f"Syntax issues: {'; '.join(errors)}"
        ),
    )


def check_downstream_impact(
    changes: list[FileChange],
    contents: dict[str, str],
    project_files: Optional[Mapping[str, str]],
) -> VerificationCheck:
    if project_files is None:
        return VerificationCheck("downstream_impact", True, "Skipped: no project snapshot")

    deleted = {c.file_path for c in changes if c.change_type == "delete"} - set(contents)
    changed = [p for p in _touched_paths(changes, "edit", "delete") if is_source_file(p)]
    # Deleted paths stay resolvable so their importers can be found
    index = build_import_index({**{path: "" for path in deleted}, **project_files})

    broken = []
    for path in changed:
        importers = index.get(path, [])
        if path in deleted:
            broken.extend(f"{importer} imports deleted {path}" for importer, _ in importers)
            continue
        exports = parse_exports(contents.get(path, ""))
        for importer, record in importers:
            if record.default and not exports.has_default:
                broken.append(f"{importer} uses the default export of {path}")
            if exports.reexports_all:
                continue
            for symbol in record.symbols:
                if symbol != "default" and symbol not in exports.names:
                    broken.append(f"{importer} imports '{symbol}' no longer exported by {path}")
    return VerificationCheck(
        name="downstream_impact",
        passed=not broken,
        details=(
            "No downstream files are affected" if not broken
            else f"Broken downstream usage: {'; '.join(broken)}"
        ),
    )


def verify_changes(
    changes: list[FileChange],
    contents: dict[str, str],
    scope: set[str],
    project_files: Optional[Mapping[str, str]] = None,
) -> VerificationResult:
    """
    Run every check over the applied changes.

    Args:
        changes: Changes the act phase applied
        contents: Re-read content of every changed file that still exists
        scope: Files the cycle declared it would touch
        project_files: Post-change project snapshot, for the import checks
    """
    checks = [
        check_file_existence(changes, contents),
        check_import_validity(changes, contents, project_files),
        check_export_consistency(changes, contents),
        check_protected_paths(changes),
        check_scope_integrity(changes, scope),
        check_syntax_sanity(changes, contents),
        check_downstream_impact(changes, contents, project_files),
    ]
    failed = [c.name for c in checks if not c.passed]
    return VerificationResult(
        passed=not failed,
        checks=checks,
        reason=f"Failed checks: {', '.join(failed)}" if failed else None,
    )
