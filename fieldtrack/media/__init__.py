"""Evidence media helpers."""
