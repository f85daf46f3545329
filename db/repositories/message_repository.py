"""
Repository for message operations.
"""

from typing import List
from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models.models import Message
from db.repositories.base_repository import BaseRepository


class MessageRepository(BaseRepository[Message]):
    """Repository for message operations."""

    def __init__(self, session: Session):
        super().__init__(session, Message)

    def upsert_many(self, messages: List[Message]) -> int:
        """Insert or replace a batch of messages keyed on message_id."""
        for message in messages:
            self.session.merge(message)
        self.session.flush()
        return len(messages)

    def get_by_conversation(self, conversation_id: str) -> List[Message]:
        """Get all messages for a conversation in chronological order."""
        return self.session.query(Message)\
            .filter(Message.conversation_id == conversation_id)\
            .order_by(Message.timestamp_utc, Message.created_at)\
            .all()

    def count_by_conversation(self, conversation_id: str) -> int:
        """Count messages in a conversation."""
        return self.session.query(func.count(Message.message_id))\
            .filter(Message.conversation_id == conversation_id)\
            .scalar() or 0
