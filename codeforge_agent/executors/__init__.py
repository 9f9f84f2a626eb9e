"""
Tool Executors
==============

Concrete implementations behind the tool definitions.
"""

from codeforge_agent.executors.local import LocalExecutors, register_local_executors
