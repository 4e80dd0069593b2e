"""Append-only audit trail.

Writing an entry is best effort: it runs after the primary operation has
committed, and a failed append is logged on ``workforce.audit`` and swallowed.
The trail is observability, never a consistency boundary, so it can neither
roll back nor block the operation it describes.
"""

from __future__ import annotations

import enum
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from workforce.logging_utils import REDACTED
from workforce.models import AuditEntry

logger = logging.getLogger("workforce.audit")


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(instance: Any) -> dict[str, Any] | None:
    """Column values of a mapped instance; columns flagged sensitive are redacted."""
    if instance is None:
        return None
    mapper = sa_inspect(instance).mapper
    payload: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        if column.info.get("sensitive"):
            payload[column.name] = REDACTED
            continue
        payload[column.name] = _jsonable(getattr(instance, attr.key))
    return payload


def record_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    resource_type: str,
    resource_id: Any = None,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    request_meta: dict[str, Any] | None = None,
) -> AuditEntry | None:
    meta = {key: _jsonable(value) for key, value in (request_meta or {}).items()}
    entry = AuditEntry(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        before=before,
        after=after,
        request_meta=meta,
    )
    try:
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_write_failed",
            extra={
                "request_id": meta.get("request_id"),
                "action": action,
                "actor_id": actor_id,
                "resource_type": resource_type,
                "resource_id": entry.resource_id,
            },
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": meta.get("request_id"),
            "action": action,
            "actor_id": actor_id,
            "resource_type": resource_type,
            "resource_id": entry.resource_id,
        },
    )
    return entry
