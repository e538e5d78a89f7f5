from __future__ import annotations

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from pharmadash.core import security
from pharmadash.core.config import settings
from pharmadash.core.security import (
    ANONYMOUS,
    create_access_token,
    decode_access_token,
    get_current_access,
    require_roles,
)


def _creds(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_token_round_trip_keeps_scope() -> None:
    token = create_access_token(user_id="42", roles=["Manager"], pharmacies=["7", "9"])
    claims = decode_access_token(token)
    assert claims.sub == "42"
    assert claims.pharmacy_scope == ["7", "9"]
    assert claims.exp is not None


def test_expired_token_is_rejected() -> None:
    token = create_access_token(user_id="42", roles=["viewer"], pharmacies=[], minutes=-5)
    with pytest.raises(HTTPException) as info:
        decode_access_token(token)
    assert info.value.status_code == 401


def test_missing_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    with pytest.raises(HTTPException) as info:
        get_current_access(None)
    assert info.value.status_code == 401


def test_auth_disabled_yields_anonymous_network_scope(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "AUTH_ENABLED", False)
    claims = get_current_access(None)
    assert claims is ANONYMOUS
    assert claims.pharmacy_scope == []


def test_role_check_is_case_insensitive() -> None:
    check = require_roles("manager", "admin")
    claims = decode_access_token(create_access_token(user_id="1", roles=["MANAGER"], pharmacies=[]))
    assert check(claims) is claims

    with pytest.raises(HTTPException) as info:
        check(security.AccessClaims(sub="2", roles=["viewer"]))
    assert info.value.status_code == 403


def test_credentials_are_decoded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    token = create_access_token(user_id="5", roles=["analyst"], pharmacies=["3"])
    assert get_current_access(_creds(token)).pharmacy_scope == ["3"]
