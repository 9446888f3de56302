"""Dependency-aware phase runner for multi-package workspaces: graph, executor, reports and styles."""

__version__ = "0.1.0"
__all__ = ["executor", "graph", "reports", "styles"]