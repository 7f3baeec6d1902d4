"""Execution of confirmed mutations."""
