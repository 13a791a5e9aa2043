"""Autocomplete suggestion cache."""
