"""callrelay - real-time voice agent for phone calls."""

__version__ = "0.1.0"
