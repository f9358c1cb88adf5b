"""Configuration, exceptions and background scheduling."""
