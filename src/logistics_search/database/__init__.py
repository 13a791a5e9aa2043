"""Document store access and API contracts."""
