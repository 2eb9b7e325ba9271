# Overview: Service-layer operations for audit; encapsulates business logic and database work.

"""
Audit Recorder invariants (authoritative)

- Append-only: every record() call inserts exactly one entry with a fresh uuid.
- No update or delete API exists, here or anywhere else.
- Entries are written inside the same DB transaction as the mutation they
  describe, so a rolled-back checkout leaves no audit trail either.
- before/after are structured JSON sub-documents, never pre-serialized strings.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditEntry, AUDIT_ACTIONS


@dataclass(frozen=True)
class RequestContext:
    """Who/where a mutation came from. Every field is optional."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = None


SYSTEM_CONTEXT = RequestContext()


class AuditRecorder:
    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        *,
        table_name: str,
        record_id: int | None,
        action: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
        actor_id: int | None = None,
        context: RequestContext | None = None,
    ) -> AuditEntry:
        """Append one immutable audit entry."""
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Invalid audit action '{action}'")
        context = context or SYSTEM_CONTEXT

        entry = AuditEntry(
            public_id=str(uuid.uuid4()),
            table_name=table_name,
            record_id=record_id,
            action=action,
            # Snapshots must not change if the caller mutates its dict later
            before=copy.deepcopy(before) if before is not None else None,
            after=copy.deepcopy(after) if after is not None else None,
            actor_id=actor_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            endpoint=context.endpoint,
            http_method=context.http_method,
        )
        self.session.add(entry)
        self.session.flush()  # ensures entry.id is assigned without committing
        return entry

    def entries_for(self, table_name: str, record_id: int | None = None) -> list[AuditEntry]:
        query = self.session.query(AuditEntry).filter(AuditEntry.table_name == table_name)
        if record_id is not None:
            query = query.filter(AuditEntry.record_id == record_id)
        return query.order_by(AuditEntry.created_at.asc(), AuditEntry.id.asc()).all()
