"""Keeps rich-text image references consistent with the managed file store."""
