"""Claude History Monitor: tails prompt history, groups sessions, enforces retention."""

__version__ = "0.1.0"
