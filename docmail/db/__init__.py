"""Relational persistence for mail accounts."""
