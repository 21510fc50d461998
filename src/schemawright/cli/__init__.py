"""Schemawright command-line interface."""
