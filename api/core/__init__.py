"""Core application wiring: config, logging, database, dependencies."""
