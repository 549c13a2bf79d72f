"""
Notification Outbox Module

Emails triggered by financial mutations are written to the ``outbox``
collection inside the same storage transaction as the mutation, then
delivered later by ``OutboxDispatcher`` with bounded retry.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


logger = get_logger("horizon.outbox")


class MessageKind(Enum):
    """Kinds of outbound messages"""
    WELCOME = "welcome"
    TRANSACTION_ALERT = "transaction_alert"
    TRANSACTION_PENDING = "transaction_pending"
    RECURRING_SETUP = "recurring_setup"
    STATEMENT = "statement"
    CHECK_DEPOSIT_RECEIVED = "check_deposit_received"
    CHECK_DEPOSIT_REJECTED = "check_deposit_rejected"


class OutboxStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


TEMPLATES: Dict[MessageKind, tuple] = {
    MessageKind.WELCOME: (
        "Welcome to Horizon Global Capital",
        "Welcome, {name}!\n\nYour checking account number is {account_number} "
        "(routing {routing_number}).\n\nYour login email is {email}."
    ),
    MessageKind.TRANSACTION_ALERT: (
        "Your account has been {direction}",
        "Dear {name},\n\nA {type} of {amount} was posted to your account on {date}.\n"
        "Description: {description}\nBalance after: {balance_after}\nReference: {reference}\n\n"
        "If you did not authorize this transaction, please contact us immediately."
    ),
    MessageKind.TRANSACTION_PENDING: (
        "Your {type} request is pending",
        "Dear {name},\n\nYour {type} of {amount} was received and is awaiting approval.\n"
        "Reference: {reference}"
    ),
    MessageKind.RECURRING_SETUP: (
        "Recurring {type} scheduled",
        "Dear {name},\n\nA recurring {type} of {amount} has been scheduled {interval}.\n"
        "Description: {description}"
    ),
    MessageKind.STATEMENT: (
        "Your {account_type} statement ({start_date} to {end_date})",
        "{body}"
    ),
    MessageKind.CHECK_DEPOSIT_RECEIVED: (
        "We received your check deposit",
        "Dear {name},\n\nYour check deposit of {amount} to {account_type} is under review.\n"
        "Check number: {check_number}"
    ),
    MessageKind.CHECK_DEPOSIT_REJECTED: (
        "Your check deposit was not accepted",
        "Dear {name},\n\nYour check deposit of {amount} could not be accepted.\n"
        "Reason: {reason}"
    ),
}


def render(kind: MessageKind, data: Dict[str, Any]) -> tuple:
    """Render the (subject, body) pair for a message kind"""
    subject_template, body_template = TEMPLATES[kind]
    return subject_template.format(**data), body_template.format(**data)


@dataclass
class OutboxMessage(StorageRecord):
    """A single message waiting for (or finished with) delivery"""
    user_id: str
    recipient: str
    kind: MessageKind
    subject: str
    body: str
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    max_attempts: int = 5
    last_error: Optional[str] = None
    sent_at: Optional[datetime] = None

    @property
    def deliverable(self) -> bool:
        if self.status == OutboxStatus.PENDING:
            return True
        return self.status == OutboxStatus.FAILED and self.attempts < self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['kind'] = self.kind.value
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutboxMessage':
        data['kind'] = MessageKind(data['kind'])
        data['status'] = OutboxStatus(data['status'])
        if data.get('sent_at'):
            data['sent_at'] = datetime.fromisoformat(data['sent_at'])
        return super().from_dict(data)


class Outbox:
    """Writes messages to the outbox collection"""

    def __init__(self, storage: StorageInterface, max_attempts: int = 5,
                 table_name: str = "outbox"):
        self.storage = storage
        self.max_attempts = max_attempts
        self.table_name = table_name

    def enqueue(self, kind: MessageKind, user_id: str, recipient: str,
                data: Dict[str, Any]) -> OutboxMessage:
        """Record the intent to send; call inside the caller's atomic() block"""
        subject, body = render(kind, data)
        now = datetime.now(timezone.utc)
        message = OutboxMessage(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            recipient=recipient,
            kind=kind,
            subject=subject,
            body=body,
            max_attempts=self.max_attempts
        )
        self.storage.save(self.table_name, message.id, message.to_dict())
        return message

    def get(self, message_id: str) -> Optional[OutboxMessage]:
        data = self.storage.load(self.table_name, message_id)
        return OutboxMessage.from_dict(data) if data else None

    def save(self, message: OutboxMessage) -> None:
        message.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, message.id, message.to_dict())

    def messages_for_user(self, user_id: str) -> List[OutboxMessage]:
        messages = [OutboxMessage.from_dict(d) for d in self.storage.find(self.table_name, {"user_id": user_id})]
        messages.sort(key=lambda m: m.created_at)
        return messages

    def deliverable(self, limit: Optional[int] = None) -> List[OutboxMessage]:
        messages = [OutboxMessage.from_dict(d) for d in self.storage.load_all(self.table_name)]
        ready = sorted((m for m in messages if m.deliverable), key=lambda m: m.created_at)
        return ready[:limit] if limit else ready

    def delivery_stats(self) -> Dict[str, Any]:
        messages = [OutboxMessage.from_dict(d) for d in self.storage.load_all(self.table_name)]
        stats = {
            "total": len(messages),
            "by_status": {status.value: 0 for status in OutboxStatus},
            "delivery_rate": 0.0
        }
        for message in messages:
            stats["by_status"][message.status.value] += 1
        if messages:
            stats["delivery_rate"] = stats["by_status"][OutboxStatus.SENT.value] / len(messages)
        return stats


class MailTransport(ABC):
    """Abstract base class for mail transports"""

    @abstractmethod
    async def send(self, message: OutboxMessage) -> bool:
        """Send a message. Returns True if the transport accepted it."""
        pass


class LogMailTransport(MailTransport):
    """Logs messages instead of sending them (development default)"""

    def __init__(self, sender: str = ""):
        self.sender = sender

    async def send(self, message: OutboxMessage) -> bool:
        log_action(
            logger, "info", f"EMAIL to {message.recipient}: {message.subject}",
            user_id=message.user_id, action="mail_logged", resource=message.id
        )
        return True


class HTTPMailTransport(MailTransport):
    """Delivers messages through a JSON mail API"""

    def __init__(self, url: str, sender: str, api_key: Optional[str] = None,
                 timeout: float = 10.0):
        self.url = url
        self.sender = sender
        self.api_key = api_key
        self.timeout = timeout

    def _post(self, message: OutboxMessage) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = requests.post(
            self.url,
            json={
                "from": self.sender,
                "to": message.recipient,
                "subject": message.subject,
                "text": message.body,
                "idempotency_key": message.id
            },
            headers=headers,
            timeout=self.timeout
        )
        return 200 <= response.status_code < 300

    async def send(self, message: OutboxMessage) -> bool:
        return await asyncio.to_thread(self._post, message)


class OutboxDispatcher:
    """Delivers pending outbox messages with bounded retry"""

    def __init__(self, outbox: Outbox, transport: MailTransport):
        self.outbox = outbox
        self.transport = transport

    async def dispatch_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Attempt delivery of every deliverable message"""
        results = {"attempted": 0, "sent": 0, "failed": 0}

        for message in self.outbox.deliverable(limit):
            results["attempted"] += 1
            message.attempts += 1
            try:
                accepted = await self.transport.send(message)
                error = None if accepted else "Transport rejected message"
            except Exception as e:
                accepted = False
                error = str(e) or e.__class__.__name__

            if accepted:
                message.status = OutboxStatus.SENT
                message.sent_at = datetime.now(timezone.utc)
                message.last_error = None
                results["sent"] += 1
            else:
                message.status = OutboxStatus.FAILED
                message.last_error = error
                results["failed"] += 1
                log_action(
                    logger, "warning",
                    f"Delivery attempt {message.attempts}/{message.max_attempts} failed: {error}",
                    user_id=message.user_id, action="mail_failed", resource=message.id
                )

            self.outbox.save(message)

        return results
