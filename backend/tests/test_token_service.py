from datetime import timedelta

import pytest

from memberbridge.core.exceptions import TokenInvalidError
from memberbridge.core.security import TokenPayload, utcnow
from memberbridge.models.security import RefreshToken
from memberbridge.models.user import User
from memberbridge.services.token_service import token_service

BOB = TokenPayload(user_id=3, username="bob", email="bob@example.com", has_active_membership=False)


@pytest.fixture
def bob(db):
    db.add(User(id=3, email="bob@example.com"))
    db.commit()
    return BOB


def test_only_fingerprint_is_stored(db, signer, bob):
    raw = signer.issue_pair(bob).refresh_token
    record = token_service.persist(db, bob.user_id, raw)

    assert record.token_fingerprint == token_service.fingerprint(raw)
    assert len(record.token_fingerprint) == 64
    assert raw not in record.token_fingerprint
    assert record.expires_at > utcnow()


def test_persisted_token_validates(db, signer, bob):
    raw = signer.issue_pair(bob).refresh_token
    token_service.persist(db, bob.user_id, raw)

    valid, record = token_service.validate(db, raw)
    assert valid is True
    assert record.user_id == bob.user_id


def test_unknown_token_does_not_validate(db, signer, bob):
    valid, record = token_service.validate(db, signer.issue_pair(bob).refresh_token)
    assert valid is False
    assert record is None


def test_revoke_is_idempotent(db, signer, bob):
    raw = signer.issue_pair(bob).refresh_token
    token_service.persist(db, bob.user_id, raw)

    assert token_service.revoke_refresh_token(db, raw) is True
    assert token_service.revoke_refresh_token(db, raw) is True
    assert token_service.validate(db, raw)[0] is False


def test_revoke_unknown_token_reports_false(db):
    assert token_service.revoke(db, "0" * 64) is False


def test_rotate_revokes_old_and_links_new(db, signer, bob):
    old = signer.issue_pair(bob).refresh_token
    new = signer.issue_pair(bob).refresh_token
    token_service.persist(db, bob.user_id, old)

    token_service.rotate(db, old, new, bob.user_id)

    assert token_service.validate(db, old)[0] is False
    assert token_service.validate(db, new)[0] is True
    old_record = db.query(RefreshToken).filter(
        RefreshToken.token_fingerprint == token_service.fingerprint(old)
    ).one()
    assert old_record.revoked_at is not None
    assert old_record.replaced_by_fingerprint == token_service.fingerprint(new)


def test_rotate_replay_is_rejected_and_rolled_back(db, signer, bob):
    old = signer.issue_pair(bob).refresh_token
    first = signer.issue_pair(bob).refresh_token
    second = signer.issue_pair(bob).refresh_token
    token_service.persist(db, bob.user_id, old)
    token_service.rotate(db, old, first, bob.user_id)

    with pytest.raises(TokenInvalidError):
        token_service.rotate(db, old, second, bob.user_id)

    assert token_service.validate(db, second)[0] is False
    assert token_service.validate(db, first)[0] is True


def test_expired_records_are_purged_on_persist(db, signer, bob):
    stale = signer.issue_pair(bob).refresh_token
    record = token_service.persist(db, bob.user_id, stale)
    record.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    assert token_service.validate(db, stale)[0] is False
    token_service.persist(db, bob.user_id, signer.issue_pair(bob).refresh_token)
    assert db.query(RefreshToken).count() == 1
