"""Convert BAG extracts to SQLite and serve address lookups over HTTP."""

__version__ = "1.0.0"