"""Shared test fixtures for spacio tests."""
