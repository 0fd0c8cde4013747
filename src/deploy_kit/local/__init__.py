"""Local command execution."""

from .session import LocalCommandResult, LocalSession

__all__ = ["LocalSession", "LocalCommandResult"]
