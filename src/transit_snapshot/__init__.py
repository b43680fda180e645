"""Local relational snapshot of a public transit schedule, kept in sync with a remote source."""

__version__ = "0.1.0"
