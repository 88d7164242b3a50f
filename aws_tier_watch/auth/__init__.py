"""AWS authentication."""
