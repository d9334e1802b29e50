"""Core utilities for the Huddle backend."""

from .slug import channel_name_for
from .storage import public_url, remove_file, resolve_path, store_upload

__all__ = ["store_upload", "resolve_path", "remove_file", "public_url", "channel_name_for"]
