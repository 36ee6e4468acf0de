"""External payment platform integrations."""
