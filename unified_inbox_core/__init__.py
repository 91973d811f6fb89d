"""Unified inbox core: platform connections, token refresh and message ingestion."""
