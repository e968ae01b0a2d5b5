"""Database access for the corporate registry store."""
