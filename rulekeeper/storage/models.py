
from datetime import datetime, timezone
import json

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Integer,
    ForeignKey,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ruleset(Base):
    __tablename__ = "rulesets"
    
    id = Column(Integer, primary_key=True)
    contents = Column(Text, nullable=False)  # ruleset XML/JSON as published
    
    targets = relationship("Target", back_populates="ruleset")
    
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contents": self.contents,
        }

class Target(Base):
    __tablename__ = "targets"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    host = Column(String(255), nullable=False, index=True)  # may hold a leading or trailing wildcard
    ruleset_id = Column(Integer, ForeignKey("rulesets.id"), nullable=False, index=True)
    
    ruleset = relationship("Ruleset", back_populates="targets")
    
    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "ruleset_id": self.ruleset_id,
        }

class SystemState(Base):
    __tablename__ = "system_state"
    
    key = Column(String(100), primary_key=True)
    value = Column(Text)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    
    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": json.loads(self.value) if self.value else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
