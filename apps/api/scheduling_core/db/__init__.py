"""Database models, types and session."""
