"""Reporting: read-only queries, terminal formatters, JSON export."""
