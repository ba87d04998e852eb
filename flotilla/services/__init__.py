"""Services for remote access to machines."""
