"""Shared persistence layer for the Discord link service."""
