import json
from typing import Any

from sqlalchemy.orm import Session

from core.logging import get_logger
from models.audit import AuditEvent

logger = get_logger(__name__)


def log_event(
    db: Session,
    event_type: str,
    actor_user_id: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Add an audit row to the caller's transaction (not committed here), so the
    audit entry and the change it describes land together or not at all.
    """
    meta = meta or {}
    evt = AuditEvent(
        event_type=event_type,
        actor_user_id=actor_user_id,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta_json=json.dumps(meta, ensure_ascii=False, default=str),
    )
    db.add(evt)
    logger.info("audit %s actor=%s target=%s:%s meta=%s", event_type, actor_user_id, target_type, target_id, meta)
    return evt
