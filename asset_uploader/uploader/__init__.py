"""Chunked upload engine."""
