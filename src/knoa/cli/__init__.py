"""Command-line interface (``knoa``)."""
