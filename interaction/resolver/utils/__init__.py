"""Text and slot normalisation helpers."""
