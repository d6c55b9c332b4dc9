"""Daily achievement tracking and sync engine."""
