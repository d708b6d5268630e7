"""Dashboard API for burst-protection analytics on Vertica."""

__version__ = "1.0.0"
