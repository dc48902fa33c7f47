"""Wish storage and the filter/sort view-model."""

from .routes import wishes_bp

__all__ = ["wishes_bp"]
