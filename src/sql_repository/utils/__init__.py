"""Utility modules for the repository layer."""

from sql_repository.utils.serialization import dumps

__all__ = [
    "dumps",
]
