"""Time-travel debugging client core for MVI stores."""

__version__ = "1.0.0"
