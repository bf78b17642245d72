"""SQLModel ORM tables for the coordinator key space."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class KeyValueEntry(SQLModel, table=True):
    __tablename__ = "kv_entries"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SetMember(SQLModel, table=True):
    __tablename__ = "set_members"  # type: ignore[bad-override]
    __table_args__ = (PrimaryKeyConstraint("key", "member", name="pk_set_members"),)

    key: str = Field(index=True)
    member: str


class ListEntry(SQLModel, table=True):
    __tablename__ = "list_entries"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_list_entries_key_entry", "key", "entry_id"),)

    entry_id: int | None = Field(default=None, primary_key=True)
    key: str
    value: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
