"""Configuration loading for the coach engine."""
