from datetime import timedelta

import pytest

from memberbridge.config import settings
from memberbridge.core.exceptions import DeviceCodeNotFoundError, GenerationExhaustedError
from memberbridge.core.security import utcnow
from memberbridge.models.device import DeviceLinkCode
from memberbridge.models.user import User
from memberbridge.services import device_link_service as device_module
from memberbridge.services.code_generator import DEVICE_CODE_ALPHABET
from memberbridge.services.device_link_service import device_link_service


def _add_user(db, user_id=1):
    db.add(User(id=user_id, email=f"user{user_id}@example.com"))
    db.commit()


def _expire(db, code, seconds_ago=1):
    record = db.query(DeviceLinkCode).filter(DeviceLinkCode.code == code).one()
    record.expires_at = utcnow() - timedelta(seconds=seconds_ago)
    db.commit()


def test_create_code_persists_unlinked_row(db):
    grant = device_link_service.create_code(db)

    assert grant.expires_in == settings.DEVICE_CODE_TTL_SECONDS
    assert len(grant.code) == settings.DEVICE_CODE_LENGTH
    assert set(grant.code) <= set(DEVICE_CODE_ALPHABET)

    record = db.query(DeviceLinkCode).filter(DeviceLinkCode.code == grant.code).one()
    assert record.linked is False
    assert record.user_id is None


def test_full_pairing_scenario(db):
    _add_user(db, 42)
    grant = device_link_service.create_code(db)

    assert device_link_service.poll(db, grant.code).activated is False

    status = device_link_service.confirm(db, grant.code, 42)
    assert status.activated is True
    assert status.user_id == 42

    polled = device_link_service.poll(db, grant.code)
    assert polled.activated is True
    assert polled.user_id == 42


def test_codes_are_case_insensitive_and_trimmed(db):
    _add_user(db)
    grant = device_link_service.create_code(db)

    status = device_link_service.confirm(db, f"  {grant.code.lower()} ", 1)
    assert status.user_id == 1
    assert device_link_service.poll(db, grant.code.lower()).activated is True


def test_confirm_is_idempotent_and_first_owner_wins(db):
    _add_user(db, 1)
    _add_user(db, 2)
    grant = device_link_service.create_code(db)

    first = device_link_service.confirm(db, grant.code, 1)
    again = device_link_service.confirm(db, grant.code, 1)
    other = device_link_service.confirm(db, grant.code, 2)

    assert first == again
    assert other.user_id == 1
    record = db.query(DeviceLinkCode).filter(DeviceLinkCode.code == grant.code).one()
    assert record.user_id == 1


def test_confirm_unknown_code_raises(db):
    with pytest.raises(DeviceCodeNotFoundError):
        device_link_service.confirm(db, "ZZZZZZZZ", 1)


def test_confirm_expired_code_raises(db):
    _add_user(db)
    grant = device_link_service.create_code(db)
    _expire(db, grant.code)

    with pytest.raises(DeviceCodeNotFoundError):
        device_link_service.confirm(db, grant.code, 1)


def test_poll_unknown_and_expired_are_indistinguishable(db):
    grant = device_link_service.create_code(db)
    _expire(db, grant.code)

    expired = device_link_service.poll(db, grant.code)
    unknown = device_link_service.poll(db, "NEVERMAD")
    assert expired == unknown
    assert expired.activated is False
    assert expired.user_id is None


def test_expired_unlinked_codes_are_swept(db):
    grant = device_link_service.create_code(db)
    _expire(db, grant.code)

    removed = device_link_service.sweep_expired(db)
    assert removed == 1
    assert db.query(DeviceLinkCode).count() == 0


def test_linked_code_survives_expiry_within_retention(db):
    _add_user(db, 5)
    grant = device_link_service.create_code(db)
    device_link_service.confirm(db, grant.code, 5)
    _expire(db, grant.code, seconds_ago=10)

    polled = device_link_service.poll(db, grant.code)
    assert polled.activated is True
    assert polled.user_id == 5

    _expire(db, grant.code, seconds_ago=settings.DEVICE_CODE_LINKED_RETENTION_SECONDS + 10)
    assert device_link_service.poll(db, grant.code).activated is False


def test_create_code_retries_on_collision(db, monkeypatch):
    existing = device_link_service.create_code(db)
    candidates = iter([existing.code, existing.code, "NEWCODE2"])
    monkeypatch.setattr(device_module, "generate_device_code", lambda length: next(candidates))

    grant = device_link_service.create_code(db)
    assert grant.code == "NEWCODE2"


def test_create_code_gives_up_after_max_attempts(db, monkeypatch):
    existing = device_link_service.create_code(db)
    monkeypatch.setattr(device_module, "generate_device_code", lambda length: existing.code)

    with pytest.raises(GenerationExhaustedError):
        device_link_service.create_code(db)


def test_insert_race_is_treated_as_collision(db, monkeypatch):
    existing = device_link_service.create_code(db)
    candidates = iter([existing.code, "RACEWIN2"])
    monkeypatch.setattr(device_module, "generate_device_code", lambda length: next(candidates))
    # Skip the pre-check so the duplicate reaches the unique constraint
    monkeypatch.setattr(device_module.DeviceLinkService, "_is_active", staticmethod(lambda db, code: False))

    grant = device_link_service.create_code(db)
    assert grant.code == "RACEWIN2"
    assert db.query(DeviceLinkCode).count() == 2
