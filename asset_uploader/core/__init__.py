"""Configuration, logging and errors."""
