"""Data models for trust scoring, elections and vote sessions."""
