"""Project-scoped retrieval-augmented copilot for the client portal."""

__version__ = "1.0.0"
