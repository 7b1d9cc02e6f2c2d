"""Product stock access."""
