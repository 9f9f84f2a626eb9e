"""
Agent Tools
===========

Tool definitions exposed to the model and the registries that hold them.
"""

from codeforge_agent.tools.registry import (
    ToolRegistry,
    ExecutorRegistry,
    ToolExecutor,
    create_default_registry,
)
from codeforge_agent.tools.definitions import (
    ALL_TOOLS,
    FILE_TOOLS,
    GIT_TOOLS,
    GITHUB_TOOLS,
    UTILITY_TOOLS,
    SELF_IMPROVE_TOOLS,
)
