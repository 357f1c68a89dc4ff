"""Relational persistence: ORM models and schema initialisation."""
