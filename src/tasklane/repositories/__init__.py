"""Repository interfaces for tasklane.

This package contains abstract base classes (ABCs) that define the contracts
the mutation pipeline needs from a persistence backend. These are the "Ports"
in the Hexagonal Architecture.

Implementations (Adapters) are in:
- tasklane.adapters.rest_api (remote API)
"""

from .repository import TaskRepository, TimeEntryRepository

__all__ = [
    "TaskRepository",
    "TimeEntryRepository",
]
