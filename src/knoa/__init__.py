"""
knoa - coordination substrate for an AI-assisted development workflow.

Tasks, sessions and feedback are persisted as JSON under ``ai-context/``;
the components that manage them talk through a shared event bus, report
failures to a central error handler and are wired by a service container.
"""

__version__ = "0.1.0"
