"""Web server for conductor."""
