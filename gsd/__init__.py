"""GSD MCP Server - phase lifecycle engine package."""

# No imports at package level; main.py and the tests import submodules directly.

__version__ = "0.1.0"

__all__ = [
    "checkpoints",
    "config",
    "errors",
    "lifecycle",
    "models",
    "roadmap",
    "session",
    "workflow",
    "workspace",
]
