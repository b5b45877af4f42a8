"""Concrete package manager adapters (apt, yum, zypper, googet)."""
