"""Adapters — bindings to the OS package managers.

Public re-exports for convenient access.
"""

from hostpolicy.adapters.base import PackageManager, PackageManagerError, Repair
from hostpolicy.adapters.mock import MockPackageManager
from hostpolicy.adapters.registry import HostCapabilities, default_managers

__all__ = [
    "HostCapabilities",
    "MockPackageManager",
    "PackageManager",
    "PackageManagerError",
    "Repair",
    "default_managers",
]
