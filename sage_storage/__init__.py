"""Read-only HTTP gateway for Sage node files held in an object store."""

__version__ = "0.1.0"
