"""
Repository for conversation operations.
"""

from typing import List, Optional
from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from db.models.models import Conversation
from db.repositories.base_repository import BaseRepository

SORTABLE_COLUMNS = ('start_time', 'end_time', 'created_at', 'updated_at')


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for conversation operations."""

    def __init__(self, session: Session):
        super().__init__(session, Conversation)

    def get_page(self, sort_by: str = 'end_time', limit: Optional[int] = 50, offset: int = 0,
                 descending: bool = True) -> List[Conversation]:
        """
        Get a page of conversations ordered by a time column.

        Args:
            sort_by: One of start_time, end_time, created_at, updated_at
            limit: Page size (None for no limit)
            offset: Rows to skip
            descending: Newest first when True

        Raises:
            ValueError: sort_by is not a sortable column
        """
        if sort_by not in SORTABLE_COLUMNS:
            raise ValueError(f"Cannot sort conversations by '{sort_by}' (allowed: {', '.join(SORTABLE_COLUMNS)})")

        column = getattr(Conversation, sort_by)
        order = desc(column) if descending else asc(column)
        query = self.session.query(Conversation).order_by(order, Conversation.id)

        if offset > 0:
            query = query.offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_by_source(self, source_app: str) -> List[Conversation]:
        """Get all conversations imported from one source application."""
        return self.session.query(Conversation)\
            .filter(Conversation.source_app == source_app)\
            .order_by(desc(Conversation.end_time))\
            .all()
