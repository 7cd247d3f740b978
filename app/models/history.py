from sqlalchemy import Column, Integer, String, Text

from app.database import Base


class HistoryBlob(Base):
    __tablename__ = "history"

    key = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    payload = Column(Text, nullable=False, default="[]")
    updated_at = Column(String, nullable=False)
