"""Derived-state and billing automation engine."""
