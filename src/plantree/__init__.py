"""plantree - hierarchical plan tree with dependency and blast-radius resolution."""

__version__ = "0.1.0"
