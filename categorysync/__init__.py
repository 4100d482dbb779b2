"""Category membership convergence job for a replicated wiki database."""

__version__ = "0.3.0"
