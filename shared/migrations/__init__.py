"""SQL migrations for the Discord link tables."""
