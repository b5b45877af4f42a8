"""hostpolicy — host-side package and software recipe reconciliation agent."""

__version__ = "0.1.0"
