"""In-game system mail management with in-memory and SQLite stores."""

__version__ = "0.1.0"