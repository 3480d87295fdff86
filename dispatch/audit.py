"""Audit sink (best-effort).

Commands register :func:`log_action` as an after-commit callback, so an
audit row only exists for a change that actually happened. The row is
written in its own small transaction; any failure is logged and rolled
back, never propagated to the command.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import AuditLog

logger = logging.getLogger(__name__)


def log_action(
    actor_ref: Optional[Any],
    action: str,
    entity: str,
    entity_id: Optional[Any] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    if not current_app.config.get('AUDIT_ENABLED', True):
        return
    try:
        row = AuditLog(
            actor_ref=str(actor_ref) if actor_ref is not None else None,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            meta=dict(meta) if meta else None,
        )
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning('audit %s on %s %s not recorded', action, entity, entity_id, exc_info=True)


def recent(limit: int = 100, entity: Optional[str] = None, entity_id: Optional[Any] = None):
    query = AuditLog.query
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    return query.order_by(AuditLog.at.desc(), AuditLog.id.desc()).limit(max(1, min(int(limit), 500))).all()
