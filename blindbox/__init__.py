"""Blind box reveal flow and the recipient's received-wish collection."""
