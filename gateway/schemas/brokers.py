"""
Pydantic schemas for broker endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..validators.broker_address import is_valid_broker_address


class BrokerCreateRequest(BaseModel):
    """Admin request to register a new broker."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(..., min_length=1, max_length=253)
    port: int = Field(default=1883, ge=1, le=65535)
    label: str = Field(..., min_length=1, max_length=100)
    topic: str | None = Field(default=None, max_length=256)
    username: str | None = Field(default=None, max_length=256)
    password: str | None = Field(default=None, max_length=256)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_broker_address(v):
            raise ValueError(f"Invalid IP address: {v}")
        return v


class BrokerAssignRequest(BaseModel):
    """Assign the broker to a user; null removes the assignment."""

    user_id: str | None = Field(default=None, alias="userId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class SubscribeRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=256)


class PublishRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=256)
    message: str = Field(..., description="Payload sent as UTF-8 text at QoS 0")


class TestConnectionRequest(BaseModel):
    """Optional port override for a connection probe."""

    __test__ = False

    port: int | None = Field(default=None, ge=1, le=65535)
