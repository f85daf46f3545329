"""
SQLAlchemy models for the encrypted archive schema.

Columns marked encrypted hold base64 AES-GCM blobs produced by
CryptoService; everything else is stored in clear so the archive can be
sorted and paged without the key.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    __tablename__ = 'conversations'

    id = Column(String(255), primary_key=True)
    source_app = Column(String(100), nullable=False)
    chat_type = Column(String(10), nullable=False)
    display_name = Column(Text, nullable=False)  # encrypted
    start_time = Column(Integer, nullable=False)
    end_time = Column(Integer, nullable=False)
    tags = Column(Text, nullable=False)  # encrypted JSON array
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationship to messages
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("chat_type IN ('llm', 'human')", name='conversations_chat_type_check'),
        CheckConstraint("start_time <= end_time", name='conversations_time_bounds_check'),
        Index('idx_conversations_start_time', 'start_time'),
        Index('idx_conversations_end_time', 'end_time'),
    )

    def __repr__(self):
        return f"<Conversation(id='{self.id}', source_app='{self.source_app}')>"


class Message(Base):
    __tablename__ = 'messages'

    message_id = Column(String(64), primary_key=True)
    conversation_id = Column(String(255), ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False)
    timestamp_utc = Column(Integer, nullable=False)
    author = Column(Text, nullable=False)  # encrypted
    content = Column(Text, nullable=False)  # encrypted
    content_type = Column(String(10), nullable=False, default='text')
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("content_type IN ('text', 'code')", name='messages_content_type_check'),
        Index('idx_messages_conversation_id', 'conversation_id'),
        Index('idx_messages_timestamp', 'timestamp_utc'),
    )

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self):
        return f"<Message(message_id='{self.message_id[:12]}...', conversation_id='{self.conversation_id}')>"


class AppMetadata(Base):
    __tablename__ = 'app_metadata'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<AppMetadata(key='{self.key}')>"
