"""autobot - scheduled polling automation jobs."""

__version__ = "0.1.0"
