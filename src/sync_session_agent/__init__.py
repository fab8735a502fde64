"""Session lifecycle agent for an end-to-end-encrypted sync client."""

__version__ = "0.1.0"
