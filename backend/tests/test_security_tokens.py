from datetime import timedelta

import pytest
from jose import jwt

from memberbridge.core.exceptions import SigningKeyError, TokenInvalidError
from memberbridge.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenPayload,
    TokenSigner,
    utcnow,
)

ALICE = TokenPayload(user_id=7, username="alice", email="alice@example.com", has_active_membership=True)


def test_access_token_round_trip(signer):
    token = signer.create_token(ALICE, ACCESS_TOKEN_TYPE)
    claims = signer.verify(token, expected_type=ACCESS_TOKEN_TYPE)
    assert claims["type"] == "access"
    assert claims["userId"] == 7
    assert claims["hasActiveMembership"] is True
    assert TokenPayload.from_claims(claims) == ALICE


def test_access_verification_rejects_refresh_type(signer):
    refresh = signer.create_token(ALICE, REFRESH_TOKEN_TYPE)
    with pytest.raises(TokenInvalidError):
        signer.verify(refresh, expected_type=ACCESS_TOKEN_TYPE)


def test_refresh_verification_rejects_access_type(signer):
    access = signer.create_token(ALICE, ACCESS_TOKEN_TYPE)
    with pytest.raises(TokenInvalidError):
        signer.verify(access, expected_type=REFRESH_TOKEN_TYPE)


def test_issued_tokens_are_unique(signer):
    first = signer.issue_pair(ALICE)
    second = signer.issue_pair(ALICE)
    assert first.refresh_token != second.refresh_token
    assert first.access_token != first.refresh_token


def test_expired_token_is_rejected(rsa_keys):
    private_pem, public_pem = rsa_keys
    short_lived = TokenSigner(public_key=public_pem, private_key=private_pem, access_lifetime=-10)
    token = short_lived.create_token(ALICE, ACCESS_TOKEN_TYPE)
    with pytest.raises(TokenInvalidError):
        short_lived.verify(token)


def test_token_signed_with_other_key_is_rejected(signer):
    forged = jwt.encode({"userId": 1, "type": "access"}, "shared-secret", algorithm="HS256")
    with pytest.raises(TokenInvalidError):
        signer.verify(forged)


def test_tampered_token_is_rejected(signer):
    token = signer.create_token(ALICE, ACCESS_TOKEN_TYPE)
    header, payload, signature = token.split(".")
    with pytest.raises(TokenInvalidError):
        signer.verify(f"{header}.{payload}.{signature[::-1]}")


def test_verify_only_signer_cannot_issue(rsa_keys, signer):
    _, public_pem = rsa_keys
    verifier = TokenSigner(public_key=public_pem)
    assert verifier.can_issue is False
    with pytest.raises(SigningKeyError):
        verifier.create_token(ALICE, ACCESS_TOKEN_TYPE)

    token = signer.create_token(ALICE, ACCESS_TOKEN_TYPE)
    assert verifier.verify(token)["userId"] == 7


def test_expiration_of_matches_refresh_lifetime(signer):
    token = signer.create_token(ALICE, REFRESH_TOKEN_TYPE)
    expires_at = TokenSigner.expiration_of(token)
    expected = utcnow() + timedelta(seconds=signer.refresh_lifetime)
    assert abs((expires_at - expected).total_seconds()) < 5


def test_expiration_of_garbage_is_none():
    assert TokenSigner.expiration_of("not-a-jwt") is None


def test_payload_without_user_id_is_malformed():
    with pytest.raises(TokenInvalidError):
        TokenPayload.from_claims({"type": "access", "username": "alice"})
