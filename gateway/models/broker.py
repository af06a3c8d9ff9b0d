"""
Broker endpoint record.

Owned by the persistence collaborator; the gateway core only ever mutates
`status`, `last_error` and `connection_time`.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class BrokerStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class BrokerEndpoint(BaseModel):
    """A remote MQTT broker as configured by an admin."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    host: str = Field(..., description="Broker address (IPv4, localhost or hostname)")
    port: int = Field(default=1883, ge=1, le=65535)
    label: str = Field(..., min_length=1)
    topic: str | None = Field(default=None, description="Default topic shown to assigned users")
    owner_id: str = Field(..., description="Admin that created and manages the broker")
    assigned_user_id: str | None = Field(default=None, description="Non-admin user the broker is assigned to")
    username: str | None = None
    password: str | None = None
    status: BrokerStatus = BrokerStatus.DISCONNECTED
    last_error: str | None = None
    connection_time: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_public_dict(self) -> dict:
        """Serialize without the broker password."""
        data = self.model_dump(mode="json", exclude={"password"})
        data["has_password"] = bool(self.password)
        return data
