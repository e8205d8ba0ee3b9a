"""TODO lists kept as sections of an org-style outline document."""

__version__ = "0.1.0"
