"""fleet: supervise a pool of worker agents over a shared file mesh."""

__version__ = "0.1.0"
