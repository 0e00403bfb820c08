"""Sandboxed tools the models use to inspect and change the project."""
