"""
Base repository interface for common CRUD operations.
"""

from abc import ABC
from typing import Generic, TypeVar, Optional, List
from sqlalchemy import func
from sqlalchemy.orm import Session

T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """Base repository with common operations keyed on the model's primary key."""

    def __init__(self, session: Session, model_class: type):
        self.session = session
        self.model_class = model_class

    def get_by_id(self, entity_id: str) -> Optional[T]:
        """Get entity by primary key."""
        return self.session.get(self.model_class, entity_id)

    def upsert(self, entity: T) -> T:
        """Insert or replace an entity keyed on its primary key."""
        merged = self.session.merge(entity)
        self.session.flush()
        return merged

    def delete(self, entity_id: str) -> bool:
        """Delete entity by primary key."""
        entity = self.get_by_id(entity_id)
        if entity:
            self.session.delete(entity)
            self.session.flush()
            return True
        return False

    def exists(self, entity_id: str) -> bool:
        """Check if entity exists."""
        return self.get_by_id(entity_id) is not None

    def count(self) -> int:
        """Count total entities."""
        return self.session.query(func.count()).select_from(self.model_class).scalar() or 0
