"""Utility functions for the textbook kernel."""

from textbook_kernel.utils.hashing import canonicalize_json, hash_payload, to_canonical

__all__ = ["canonicalize_json", "hash_payload", "to_canonical"]
