"""Terminal client for the coach."""
