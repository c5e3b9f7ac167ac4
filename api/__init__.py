"""Discord link API service."""
