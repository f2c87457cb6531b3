"""Adapters implementing the tasklane repository ports."""

from .rest_api import RestApiTaskRepository, RestApiTimeEntryRepository

__all__ = ["RestApiTaskRepository", "RestApiTimeEntryRepository"]
