"""FastAPI router package for bundleforge server modules."""

__all__ = ["batches_api", "build_api"]
