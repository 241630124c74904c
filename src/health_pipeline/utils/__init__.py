"""Decorator utilities for cross-cutting concerns."""
