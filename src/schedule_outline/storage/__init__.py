"""SQLite task store and the in-process live-update channel."""
