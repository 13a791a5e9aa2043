"""Logfire setup."""
