import pytest
from pydantic import ValidationError

from dispatch.schemas import (
    AssignSchema,
    DeviceRegisterSchema,
    IncidentCreateSchema,
    LocationPushSchema,
    NoteSchema,
    StatusChangeSchema,
    UnitUpdateSchema,
)


def test_incident_create_contract():
    body = IncidentCreateSchema.model_validate({
        "lat": "14.61", "lng": -90.53, "battery": 40, "device": {"os": " android ", "version": "14"},
    })
    assert body.lat == 14.61
    assert body.device.os == "android"

    for bad in ({"lat": 14.61}, {"lat": 91, "lng": 0}, {"lat": 0, "lng": 0, "battery": 101},
                {"lat": 0, "lng": 0, "accuracy": -1}, {"lat": 0, "lng": 0, "extra": 1}):
        with pytest.raises(ValidationError):
            IncidentCreateSchema.model_validate(bad)


def test_location_push_accepts_iso_or_epoch():
    assert LocationPushSchema.model_validate({"lat": 1, "lng": 2, "ts": "2025-01-01T00:00:00Z"}).ts == "2025-01-01T00:00:00Z"
    assert LocationPushSchema.model_validate({"lat": 1, "lng": 2, "ts": 1735689600000}).ts == 1735689600000
    assert LocationPushSchema.model_validate({"lat": 1, "lng": 2}).ts is None


def test_staff_contracts():
    assert AssignSchema.model_validate({"unit_id": 3}).exclusive is None
    with pytest.raises(ValidationError):
        AssignSchema.model_validate({"unit_id": 0})

    assert StatusChangeSchema.model_validate({"status": "CLOSED"}).status == "CLOSED"
    with pytest.raises(ValidationError):
        StatusChangeSchema.model_validate({"status": "CANCELED"})

    assert NoteSchema.model_validate({"text": "  hi  "}).text == "hi"
    with pytest.raises(ValidationError):
        NoteSchema.model_validate({"text": "   "})


def test_unit_update_changes_exclude_force():
    body = UnitUpdateSchema.model_validate({"status": "available", "force": True})
    assert body.changes() == {"status": "available"}
    assert body.force is True

    with pytest.raises(ValidationError):
        UnitUpdateSchema.model_validate({"force": True})
    with pytest.raises(ValidationError):
        UnitUpdateSchema.model_validate({"status": "parked"})


def test_device_register_contract():
    assert DeviceRegisterSchema.model_validate({"platform": "ios", "fcm_token": "x" * 20}).platform == "ios"
    with pytest.raises(ValidationError):
        DeviceRegisterSchema.model_validate({"platform": "ios", "fcm_token": "short"})
