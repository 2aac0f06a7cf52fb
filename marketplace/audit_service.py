"""
Audit log sink.

Events are written after the business transaction has committed, usually
from a FastAPI background task. A failing write is logged and dropped.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from pydantic import BaseModel, Field

from . import models
from .database import SessionLocal

logger = logging.getLogger(__name__)


class AuditEvent(BaseModel):
    """One audited change, captured before it is handed to the sink"""
    tenant_id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    changes: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def client_info(request: Optional[Request]) -> Dict[str, Optional[str]]:
    """IP address and user agent of the caller, as far as the proxy chain tells"""
    if request is None:
        return {"ip_address": None, "user_agent": None}

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.headers.get("x-real-ip") or (request.client.host if request.client else None)

    return {
        "ip_address": ip_address,
        "user_agent": request.headers.get("user-agent"),
    }


class AuditSink:
    """Persists audit events in their own session"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def record(self, event: AuditEvent) -> bool:
        """Write one event; never raises"""
        db = self.session_factory()
        try:
            db.add(models.AuditLog(
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                action=event.action,
                resource_type=event.resource_type,
                resource_id=event.resource_id,
                changes=event.changes,
                ip_address=event.ip_address,
                user_agent=event.user_agent
            ))
            db.commit()
            return True
        except Exception:
            db.rollback()
            logger.exception(f"Failed to write audit event {event.action} for {event.resource_type} {event.resource_id}")
            return False
        finally:
            db.close()


audit_sink = AuditSink()


def get_audit_sink() -> AuditSink:
    """Dependency so tests can swap the sink"""
    return audit_sink
