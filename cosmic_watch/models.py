from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from .database import Base


class Neo(Base):
    __tablename__ = "neos"
    id = Column(Integer, primary_key=True, index=True)
    neo_id = Column(String, unique=True, index=True)
    name = Column(String)
    close_approach_date = Column(Date)
    diameter_max_meters = Column(Float)
    velocity_kps = Column(Float)
    miss_distance_astronomical = Column(Float)
    hazardous = Column(Boolean)

    __table_args__ = (
        Index("idx_close_date", "close_approach_date"),
    )

    def __repr__(self) -> str:
        return f"<Neo {self.neo_id} {self.name}>"


class Subscriber(Base):
    __tablename__ = "subscribers"
    id = Column(Integer, primary_key=True, index=True)
    url = Column(String, unique=True)

    def __repr__(self) -> str:
        return f"<Subscriber {self.url}>"


class WatchlistEntry(Base):
    """An asteroid saved by one user. Metrics are kept flat so they score like a feed item."""

    __tablename__ = "watchlist_entries"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    asteroid_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    notes = Column(Text, default="")
    saved_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    diameter_max_meters = Column(Float, nullable=True)
    miss_distance_astronomical = Column(Float, nullable=True)
    velocity_kps = Column(Float, nullable=True)
    hazardous = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("owner_id", "asteroid_id", name="uq_watchlist_owner_asteroid"),
    )

    def __repr__(self) -> str:
        return f"<WatchlistEntry {self.owner_id} {self.asteroid_id}>"
