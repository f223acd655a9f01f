"""Immutable data transfer objects passed between the tracker layers."""
