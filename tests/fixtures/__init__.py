"""Shared test fixtures and event factories."""
