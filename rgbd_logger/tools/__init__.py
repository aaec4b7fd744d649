"""Offline tools for recorded sessions."""
