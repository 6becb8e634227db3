"""Bundled module definitions (JSON)."""
