"""
Error root — every domain error raised by the agent derives from here.

Each layer defines its own subclasses next to the code that raises
them (``ConfigError`` in the config loader, ``PackageManagerError`` in
the adapter base, ``RecipeDBError`` in the ledger, ...).
"""

from __future__ import annotations


class HostPolicyError(Exception):
    """Base class for all agent errors."""


class OperationCancelled(HostPolicyError):
    """The run was cancelled between two units of work."""
