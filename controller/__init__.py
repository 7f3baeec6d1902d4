"""HTTP surface of the coach."""
