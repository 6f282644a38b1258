"""File-coordinated worker bridge for external code-generation CLIs."""

__version__ = "0.1.0"
