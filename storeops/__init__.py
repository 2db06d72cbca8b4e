"""Backup, schema migration and bulk import tools for the store database."""
