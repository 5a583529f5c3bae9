"""Configuration helpers: runtime paths, persisted settings and feature flags."""
