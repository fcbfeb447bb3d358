"""JobSet controller: reconciles groups of replicated batch Jobs as one unit."""

__version__ = "0.1.0"
