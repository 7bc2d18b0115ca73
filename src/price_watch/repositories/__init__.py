"""Persistence boundary for listings, observations and events."""

from .base import Repository
from .postgres import PostgresRepository

__all__ = ["PostgresRepository", "Repository"]
