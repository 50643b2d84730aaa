"""Profile-based mod manager for Thunderstore communities."""

__version__ = "0.1.0"
