"""Hero Rate Tracker — snapshot collector for hero pick/win rate statistics."""

__version__ = "0.1.0"
