"""HTTP clients for the platform API."""
