"""Database plumbing."""

from .base import Base
from .session import create_schema, create_session_factory

__all__ = ["Base", "create_schema", "create_session_factory"]
