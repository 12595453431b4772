"""Packaged SQL scripts."""
