"""Murmur thread gateway application."""
