"""Shared utilities: logging, error types and timestamp helpers."""
