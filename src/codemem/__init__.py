"""Local code index with a persistent mirror and filesystem watcher."""

__version__ = "0.1.0"
