"""
Prompt Loading Utilities
========================

Functions for loading prompt templates shipped with the package and for
assembling the agent's system prompt.
"""

from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from typing import Optional

PROMPTS_PACKAGE = "codeforge_agent.prompts"


@lru_cache(maxsize=None)
def load_prompt(name: str) -> str:
    """
    Load a prompt template from the prompts package.

    Args:
        name: Name of the prompt file (without .md extension)
    """
    return (resources.files(PROMPTS_PACKAGE) / f"{name}.md").read_text(encoding="utf-8")


def get_system_prompt() -> str:
    return load_prompt("system_prompt")


def get_ooda_prompt(phase: str) -> str:
    """Load the system prompt for an LLM-backed OODA phase."""
    if phase not in ("observe", "orient", "decide"):
        raise ValueError(f"Unknown OODA phase: {phase}")
    return load_prompt(f"ooda_{phase}")


@dataclass
class ProjectContext:
    """What the agent is told about the open project."""
    project_name: str
    main_language: str = "unknown"
    repo_url: Optional[str] = None
    current_branch: Optional[str] = None
    file_tree: str = ""

    def render(self) -> str:
        lines = [
            "## Current project",
            f"- Name: {self.project_name}",
            f"- Main language: {self.main_language}",
            f"- Repository: {self.repo_url or 'local'}",
            f"- Current branch: {self.current_branch or 'unknown'}",
        ]
        if self.file_tree:
            lines += ["", "## File structure", "```", self.file_tree, "```"]
        return "\n".join(lines)


def build_system_prompt(
    project_context: Optional[ProjectContext] = None,
    base: Optional[str] = None,
) -> str:
    """Base instructions followed by the optional project context block."""
    prompt = (base or get_system_prompt()).rstrip()
    if project_context is None:
        return prompt
    return f"{prompt}\n\n{project_context.render()}\n"
