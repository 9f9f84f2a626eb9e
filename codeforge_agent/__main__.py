"""
Entry point for running codeforge_agent as a module.

Usage:
    python -m codeforge_agent [args]

This is equivalent to:
    python -m codeforge_agent.cli.chat_cli [args]
"""

from codeforge_agent.cli.chat_cli import main


if __name__ == "__main__":
    main()
