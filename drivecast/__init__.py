"""Drive file manager and video publishing backend."""
