"""Slash command bindings for the server template service."""
