"""Shared storage and provenance helpers."""
