"""Subprocess execution shared by adapters and recipe steps."""
