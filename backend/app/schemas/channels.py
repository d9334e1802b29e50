"""Schemas for channels."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, constr

from app.models.enums import ChannelType


class ChannelCreate(BaseModel):
    """Payload for creating a public or private channel."""

    name: constr(strip_whitespace=True, min_length=1, max_length=64)
    type: ChannelType = Field(
        default=ChannelType.PUBLIC,
        description="Direct channels are created through the direct endpoint",
    )


class ChannelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: ChannelType
    created_at: datetime
