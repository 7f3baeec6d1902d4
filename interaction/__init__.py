"""Conversation-facing helpers."""
