from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, List, Mapping, Optional

from fastapi import BackgroundTasks, Request
from sqlalchemy.orm import Session

from ecosystem_auth.core.database import SessionLocal
from ecosystem_auth.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

LOGIN = "LOGIN"
LOGIN_FAILED = "LOGIN_FAILED"
LOGOUT = "LOGOUT"
SELECT_COMPANY = "SELECT_COMPANY"
SSO_LAUNCH = "SSO_LAUNCH"
REGISTER = "REGISTER"
INVITE_CREATED = "INVITE_CREATED"
INVITE_ACCEPTED = "INVITE_ACCEPTED"
PASSWORD_CHANGED = "PASSWORD_CHANGED"
PASSWORD_RESET = "PASSWORD_RESET"
ACCESS_UPDATED = "ACCESS_UPDATED"
ACCESS_REVOKED = "ACCESS_REVOKED"
COMPANY_CREATED = "COMPANY_CREATED"
COMPANY_STATUS_CHANGED = "COMPANY_STATUS_CHANGED"
COMPANY_PURGED = "COMPANY_PURGED"
USER_DEACTIVATED = "USER_DEACTIVATED"
GATE_LOGIN = "GATE_LOGIN"
GATE_LOGOUT = "GATE_LOGOUT"
COACHING_ACCESS = "COACHING_ACCESS"


@dataclass(frozen=True)
class AuditEvent:
    action_type: str
    company_id: Optional[int] = None
    user_id: Optional[int] = None
    actor_email: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[Any] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None


class AuditRecorder(ABC):
    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        """Persist one audit event. May raise; callers go through ``record_safely``."""


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class DatabaseAuditRecorder(AuditRecorder):
    """Writes ``audit_log`` rows in a dedicated session, independent of the request's."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        db = self._session_factory()
        try:
            db.add(
                AuditLog(
                    company_id=event.company_id,
                    user_id=event.user_id,
                    actor_email=event.actor_email,
                    action_type=event.action_type,
                    entity_type=event.entity_type,
                    entity_id=str(event.entity_id) if event.entity_id is not None else None,
                    old_value=_dump(event.old_value),
                    new_value=_dump(event.new_value),
                    metadata_json=_dump(dict(event.metadata)) if event.metadata else None,
                    ip_address=event.ip_address,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class InMemoryAuditRecorder(AuditRecorder):
    """Non-durable recorder for single-instance demo runs and tests."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []
        self._lock = Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def actions(self) -> List[str]:
        with self._lock:
            return [event.action_type for event in self.events]


_default_recorder: AuditRecorder = DatabaseAuditRecorder()


def get_audit_recorder() -> AuditRecorder:
    return _default_recorder


def record_safely(recorder: AuditRecorder, event: AuditEvent) -> None:
    try:
        recorder.record(event)
    except Exception:
        logger.exception(
            "Audit record failed action=%s user_id=%s company_id=%s",
            event.action_type,
            event.user_id,
            event.company_id,
        )


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def emit(background_tasks: BackgroundTasks, recorder: AuditRecorder, event: AuditEvent) -> None:
    """Schedule ``event`` to be recorded after the response is sent."""
    background_tasks.add_task(record_safely, recorder, event)
