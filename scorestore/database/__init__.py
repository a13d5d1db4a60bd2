"""Database access for evaluation scores."""
