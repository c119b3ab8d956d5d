"""vibebridge: drive a local coding agent from a chat app."""

__version__ = "0.1.0"
