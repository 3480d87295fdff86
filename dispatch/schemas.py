"""Pydantic v2 contracts for strict API input validation."""

from __future__ import annotations

from typing import Literal, Type, TypeVar

from flask import request
from pydantic import BaseModel, ConfigDict, Field, model_validator


class StrictSchema(BaseModel):
    """Base strict schema: forbids unknown fields and strips strings."""

    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


SchemaT = TypeVar('SchemaT', bound=StrictSchema)


def parse_body(schema: Type[SchemaT]) -> SchemaT:
    """Validate the JSON body; pydantic's ValidationError maps to HTTP 400."""
    return schema.model_validate(request.get_json(silent=True) or {})


class DeviceInfoSchema(StrictSchema):
    os: str | None = Field(default=None, max_length=32)
    version: str | None = Field(default=None, max_length=32)


class IncidentCreateSchema(StrictSchema):
    """Contract for citizen incident creation."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    battery: int | None = Field(default=None, ge=0, le=100)
    device: DeviceInfoSchema | None = None


class LocationPushSchema(StrictSchema):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    # ISO-8601 string or unix seconds/milliseconds
    ts: str | float | None = None


class CancelSchema(StrictSchema):
    reason: str | None = Field(default=None, max_length=1000)


class AssignSchema(StrictSchema):
    unit_id: int = Field(ge=1)
    note: str | None = Field(default=None, max_length=2000)
    exclusive: bool | None = None


class StatusChangeSchema(StrictSchema):
    status: Literal['DISPATCHED', 'IN_PROGRESS', 'CLOSED']
    reason: str | None = Field(default=None, max_length=2000)


class NoteSchema(StrictSchema):
    text: str = Field(min_length=1, max_length=4000)


class UnitCreateSchema(StrictSchema):
    name: str = Field(min_length=1, max_length=80)
    type: Literal['patrol', 'moto', 'ambulance'] = 'patrol'
    plate: str | None = Field(default=None, max_length=32)
    active: bool = True


class UnitUpdateSchema(StrictSchema):
    """Operator edit of a unit; ``force`` releases it from its incident."""

    name: str | None = Field(default=None, min_length=1, max_length=80)
    type: Literal['patrol', 'moto', 'ambulance'] | None = None
    plate: str | None = Field(default=None, max_length=32)
    active: bool | None = None
    status: Literal['available', 'en_route', 'on_site', 'out_of_service'] | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    force: bool = False

    @model_validator(mode='after')
    def _not_empty(self) -> 'UnitUpdateSchema':
        if not self.changes():
            raise ValueError('at least one field is required')
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={'force'})


class SimulationCreateSchema(StrictSchema):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)
    battery: int | None = Field(default=None, ge=0, le=100)
    device: DeviceInfoSchema | None = None


class SimulationStatusSchema(StrictSchema):
    status: str = Field(min_length=1, max_length=16)


class DeviceRegisterSchema(StrictSchema):
    platform: Literal['android', 'ios']
    fcm_token: str = Field(min_length=10, max_length=255)
