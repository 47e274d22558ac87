"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, Text

from anonchat.storage import Base


class Message(Base):
    """
    Append-only record of chat messages.

    Table: messages
    Primary Key: id (auto-assigned, strictly increasing)
    """
    __tablename__ = "messages"
    # AUTOINCREMENT keeps SQLite from reusing ids of deleted rows
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender = Column(Text, nullable=False, index=True)
    message = Column(Text, nullable=False)
