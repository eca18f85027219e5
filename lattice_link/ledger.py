# File: lattice_link/ledger.py
"""
Reconciliation ledger.

One row per (graph, resource type, key) holding the provider id, the scope
needed to address it again and the last observed status. It is the only
persisted state: it lets a later run confirm an id with a single read instead
of a list-and-filter call, and lets prune find resources this tool created.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .metrics import METRICS
from .models import ResourceType

logger = logging.getLogger(__name__)

Base = declarative_base()


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (UniqueConstraint("graph", "resource_type", "key", name="uq_ledger_entity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    graph = Column(String, nullable=False, index=True)
    resource_type = Column(String, nullable=False)
    key = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    scope = Column(JSON, default=dict)
    status = Column(String, default="ACTIVE")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


@dataclass
class LedgerRecord:
    graph: str
    resource_type: ResourceType
    key: str
    resource_id: str
    scope: Dict[str, str]
    status: str
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "graph": self.graph,
            "resource_type": self.resource_type.value,
            "key": self.key,
            "resource_id": self.resource_id,
            "scope": dict(self.scope),
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _to_record(row: LedgerEntry) -> LedgerRecord:
    return LedgerRecord(
        graph=row.graph,
        resource_type=ResourceType(row.resource_type),
        key=row.key,
        resource_id=row.resource_id,
        scope=dict(row.scope or {}),
        status=row.status,
        updated_at=row.updated_at,
    )


class Ledger:
    """SQLAlchemy-backed ledger; safe to share between worker threads."""

    def __init__(self, database_url: str = "sqlite:///:memory:"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        elif database_url.startswith("sqlite"):
            engine = create_engine(database_url, connect_args={"check_same_thread": False})
        else:
            engine = create_engine(database_url)
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self._lock = threading.Lock()
        Base.metadata.create_all(bind=engine)

    def lookup(self, graph: str, resource_type: ResourceType, key: str) -> Optional[LedgerRecord]:
        with self._lock:
            db = self.SessionLocal()
            try:
                row = (
                    db.query(LedgerEntry)
                    .filter(
                        LedgerEntry.graph == graph,
                        LedgerEntry.resource_type == resource_type.value,
                        LedgerEntry.key == key,
                    )
                    .first()
                )
                return _to_record(row) if row else None
            finally:
                db.close()

    def record(self, graph: str, resource_type: ResourceType, key: str, resource_id: str,
               scope: Optional[Dict[str, str]] = None, status: str = "ACTIVE") -> None:
        with self._lock:
            db = self.SessionLocal()
            try:
                row = (
                    db.query(LedgerEntry)
                    .filter(
                        LedgerEntry.graph == graph,
                        LedgerEntry.resource_type == resource_type.value,
                        LedgerEntry.key == key,
                    )
                    .first()
                )
                if row is None:
                    row = LedgerEntry(graph=graph, resource_type=resource_type.value, key=key)
                    db.add(row)
                row.resource_id = resource_id
                row.scope = dict(scope or {})
                row.status = status
                row.updated_at = datetime.utcnow()
                db.commit()
                METRICS["ledger_entries"].set(db.query(LedgerEntry).count())
            finally:
                db.close()

    def forget(self, graph: str, resource_type: ResourceType, key: str) -> bool:
        with self._lock:
            db = self.SessionLocal()
            try:
                deleted = (
                    db.query(LedgerEntry)
                    .filter(
                        LedgerEntry.graph == graph,
                        LedgerEntry.resource_type == resource_type.value,
                        LedgerEntry.key == key,
                    )
                    .delete()
                )
                db.commit()
                METRICS["ledger_entries"].set(db.query(LedgerEntry).count())
                return deleted > 0
            finally:
                db.close()

    def entries(self, graph: Optional[str] = None) -> List[LedgerRecord]:
        with self._lock:
            db = self.SessionLocal()
            try:
                query = db.query(LedgerEntry)
                if graph is not None:
                    query = query.filter(LedgerEntry.graph == graph)
                return [_to_record(row) for row in query.order_by(LedgerEntry.id).all()]
            finally:
                db.close()
