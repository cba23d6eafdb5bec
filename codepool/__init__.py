"""Pre-generated short-code pool for the URL shortener."""
