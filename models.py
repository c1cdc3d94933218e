from __future__ import annotations

from sqlalchemy import Column, String, Text

from db import Base


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
