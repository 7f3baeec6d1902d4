"""Intent resolution: quick rules first, oracle second."""
