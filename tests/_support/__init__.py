"""Test support utilities for schema-spine tests (fake database, transaction manager)."""
