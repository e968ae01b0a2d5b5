"""Repositories wrapping backing-store queries."""
