"""sirai: an agentic coding assistant that plans, executes and validates edits."""

__version__ = "0.1.0"
