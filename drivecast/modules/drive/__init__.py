"""Google Drive storage backend and file manager endpoints."""
