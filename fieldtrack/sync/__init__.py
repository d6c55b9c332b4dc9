"""Remote persistence, offline queue and connectivity."""
