"""Ingestion: rate provider clients, retry policy, normalization, raw archive."""
