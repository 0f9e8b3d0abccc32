"""Database models and engine factories."""
