"""Echo Bot: scheduled per-guild announcements over a supervised Discord connection."""

__version__ = "0.1.0"
