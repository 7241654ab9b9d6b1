from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlmodel import Session, select

from app.domain.models import EventEnvelope, User
from app.domain.permissions import Role
from app.infra.db import get_engine
from app.infra.events import EventBus, event_bus

logger = logging.getLogger("app.notifications")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str
    event_type: str


class NotificationChannel:
    def send(self, message: NotificationMessage) -> None:
        raise NotImplementedError


class LogChannel(NotificationChannel):
    """Writes notifications to the log; mail delivery is out of scope."""

    def send(self, message: NotificationMessage) -> None:
        logger.info(
            "notification_sent",
            extra={
                "event_type": message.event_type,
                "recipients": list(message.recipients),
                "subject": message.subject,
            },
        )


def _period(payload: dict[str, Any]) -> str:
    return f"{int(payload.get('month') or 0):02d}/{payload.get('year')}"


class NotificationService:
    def __init__(self, channel: NotificationChannel | None = None) -> None:
        self.channel = channel or LogChannel()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _fleet_user_ids(self, session: Session) -> list[str]:
        statement = (
            select(User.id)
            .where(User.role == Role.FLEET_MANAGER.value)
            .where(User.is_active == True)  # noqa: E712
        )
        return list(session.exec(statement).all())

    def recipients_for(self, event: EventEnvelope) -> list[str]:
        payload = event.payload
        owner_id = payload.get("owner_id")
        supervisor_id = payload.get("assigned_supervisor_id")
        if event.event_type == "voucher.submitted":
            return [supervisor_id] if supervisor_id else []
        if event.event_type == "voucher.supervisor_approved":
            with self._session() as session:
                return self._fleet_user_ids(session)
        if event.event_type == "voucher.approved":
            return [item for item in (owner_id, supervisor_id) if item]
        if event.event_type == "voucher.rejected":
            return [owner_id] if owner_id else []
        if event.event_type == "assignment.requested":
            fls_id = payload.get("fls_supervisor_id")
            return [fls_id] if fls_id else []
        if event.event_type in {"assignment.approved", "assignment.rejected"}:
            requester = payload.get("requesting_supervisor_id")
            return [requester] if requester else []
        return []

    def build_message(self, event: EventEnvelope, recipients: list[str]) -> NotificationMessage:
        payload = event.payload
        subjects = {
            "voucher.submitted": f"Voucher {_period(payload)} submitted for approval",
            "voucher.supervisor_approved": f"Voucher {_period(payload)} awaiting fleet approval",
            "voucher.approved": f"Voucher {_period(payload)} approved",
            "voucher.rejected": f"Voucher {_period(payload)} rejected",
            "assignment.requested": "Inspector assignment request awaiting your decision",
            "assignment.approved": "Inspector assignment request approved",
            "assignment.rejected": "Inspector assignment request rejected",
        }
        subject = subjects.get(event.event_type, event.event_type)
        if event.event_type == "voucher.rejected":
            body = f"Reason: {payload.get('rejection_reason') or '-'}"
        elif event.event_type.startswith("voucher."):
            body = f"Voucher {payload.get('voucher_id')} total {payload.get('total_amount')}"
        else:
            body = f"Request {payload.get('request_id')} for inspector {payload.get('inspector_id')}"
        return NotificationMessage(recipients=recipients, subject=subject, body=body, event_type=event.event_type)

    def handle(self, event: EventEnvelope) -> None:
        recipients = self.recipients_for(event)
        if not recipients:
            logger.info("notification_skipped_no_recipients", extra={"event_type": event.event_type})
            return
        self.channel.send(self.build_message(event, recipients))

    def register(self, bus: EventBus | None = None) -> None:
        target = bus or event_bus
        for event_type in NOTIFIED_EVENT_TYPES:
            target.subscribe(event_type, self.handle)


NOTIFIED_EVENT_TYPES = (
    "voucher.submitted",
    "voucher.supervisor_approved",
    "voucher.approved",
    "voucher.rejected",
    "assignment.requested",
    "assignment.approved",
    "assignment.rejected",
)
