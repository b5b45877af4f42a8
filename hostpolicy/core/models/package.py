"""
Inventory records — what a package manager reports as present.
"""

from __future__ import annotations

from pydantic import BaseModel


class PkgInfo(BaseModel):
    """A normalized package record returned by an inventory adapter."""

    name: str
    arch: str = ""
    version: str = ""
