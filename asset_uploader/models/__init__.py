"""Upload data models."""
