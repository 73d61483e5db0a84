"""Adapters exposing managers to the CLI with events and error normalization."""

from knoa.adapters.base import ManagerAdapter, summarize_result

__all__ = ["ManagerAdapter", "summarize_result"]
