"""Shared helpers for the knoa test suite."""
