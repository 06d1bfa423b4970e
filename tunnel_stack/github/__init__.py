"""GitHub continuous-deployment modules."""

from tunnel_stack.github import secrets, workflow

__all__ = ["secrets", "workflow"]
