from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


class RecipientRole(str, Enum):
    admin = "admin"
    customer = "customer"


class NotificationChannel(str, Enum):
    email = "email"
    system = "system"


class Notification(SQLModel, table=True):
    """In-app record of a purchase event, shown in the admin inbox or to the buyer."""

    id: Optional[int] = Field(default=None, primary_key=True)

    recipient_role: RecipientRole = Field(index=True)
    user_id: Optional[int] = Field(default=None, index=True)

    # event name, e.g. "proof_submitted"; related_id is the purchase or request id
    trigger_source: str
    related_id: Optional[str] = None

    title: str
    content: str
    channel: NotificationChannel = NotificationChannel.system

    created_at: datetime = Field(default_factory=datetime.utcnow)
    read_at: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None
