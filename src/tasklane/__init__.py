"""tasklane - recurring task scheduling and optimistic task mutations."""

__version__ = "0.3.0"
