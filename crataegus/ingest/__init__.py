"""Normalizers that turn source payloads into canonical Locations."""
