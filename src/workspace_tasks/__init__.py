"""Workspace task engine.

Role-gated task workflow, dependency graph, and list/board projections for
event workspaces.
"""

__version__ = "0.1.0"
