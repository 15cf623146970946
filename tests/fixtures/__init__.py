"""Shared test fixtures for ct2bind."""
