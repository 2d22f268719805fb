from datetime import timedelta
from types import SimpleNamespace

import pytest

from complaint_portal import auth
from complaint_portal.errors import AuthenticationFailure, AuthorizationFailure
from complaint_portal.models import Role
from complaint_portal.time_utils import utcnow
from complaint_portal.tokens import get_token_service


def _identity(role: Role, email: str = "someone@example.com") -> auth.Identity:
    return auth.Identity(id=1, email=email, role=role)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("", None),
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc.def.ghi", "abc.def.ghi"),
        ("abc.def.ghi", "abc.def.ghi"),
        ('Bearer "abc.def.ghi"', "abc.def.ghi"),
        ("Bearer ", None),
    ],
)
def test_extract_token(raw, expected):
    assert auth.extract_token(raw) == expected


def test_role_ranks_are_totally_ordered():
    assert Role.USER.rank < Role.ADMIN.rank < Role.SUPERADMIN.rank
    assert not Role.USER.is_elevated
    assert Role.ADMIN.is_elevated and Role.SUPERADMIN.is_elevated
    assert Role.parse(" SuperAdmin ") == Role.SUPERADMIN
    assert Role.parse("porter") is None


@pytest.mark.parametrize("minimum", list(Role))
def test_min_role_gate_is_monotone(minimum):
    """Anyone passing a gate at `minimum` also passes every lower gate."""
    for role in Role:
        identity = _identity(role)
        if role.rank >= minimum.rank:
            assert auth.check_min_role(identity, minimum) is identity
            for lower in Role:
                if lower.rank <= minimum.rank:
                    auth.check_min_role(identity, lower)
        else:
            with pytest.raises(AuthorizationFailure):
                auth.check_min_role(identity, minimum)


def test_role_set_gate():
    assert auth.check_roles(_identity(Role.ADMIN), [Role.ADMIN, Role.SUPERADMIN]).role == Role.ADMIN
    with pytest.raises(AuthorizationFailure) as exc:
        auth.check_roles(_identity(Role.USER), [Role.ADMIN, Role.SUPERADMIN])
    assert exc.value.status_code == 403


def test_gates_without_identity_are_unauthenticated():
    with pytest.raises(AuthenticationFailure) as exc:
        auth.check_min_role(None, Role.USER)
    assert exc.value.status_code == 401

    with pytest.raises(AuthenticationFailure):
        auth.ownership_context(None)


def test_ownership_gate_for_plain_user():
    context = auth.ownership_context(_identity(Role.USER, "Owner@Example.com"))
    assert context.check_ownership

    context.assert_owns("owner@example.com")
    with pytest.raises(AuthorizationFailure):
        context.assert_owns("someone-else@example.com")
    with pytest.raises(AuthorizationFailure):
        context.assert_owns(None)


@pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPERADMIN])
def test_ownership_gate_skipped_for_elevated_roles(role):
    context = auth.ownership_context(_identity(role))
    assert not context.check_ownership
    context.assert_owns("someone-else@example.com")
    context.assert_owns(None)


def test_resolve_identity_reasons():
    tokens = get_token_service()
    principal = SimpleNamespace(id=5, email="u@example.com", role="user")

    with pytest.raises(AuthenticationFailure) as missing:
        auth.resolve_identity(None, tokens)
    assert missing.value.headers["X-Auth-Reason"] == "missing"

    expired = tokens.issue_access(principal, now=utcnow() - timedelta(days=2))
    with pytest.raises(AuthenticationFailure) as exc:
        auth.resolve_identity(f"Bearer {expired}", tokens)
    assert exc.value.headers["X-Auth-Reason"] == "expired"

    refresh = tokens.issue_refresh(principal)
    with pytest.raises(AuthenticationFailure) as exc:
        auth.resolve_identity(f"Bearer {refresh}", tokens)
    assert exc.value.headers["X-Auth-Reason"] == "wrong_type"

    identity = auth.resolve_identity(f"Bearer {tokens.issue_access(principal)}", tokens)
    assert identity == auth.Identity(id=5, email="u@example.com", role=Role.USER)


def test_password_hashing():
    hashed = auth.get_password_hash("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert auth.verify_password("s3cret-pass", hashed)
    assert not auth.verify_password("wrong", hashed)


@pytest.mark.asyncio
async def test_unauthenticated_vs_forbidden(client, make_user):
    r = await client.get("/api/admin/escalation-stats")
    assert r.status_code == 401
    assert r.headers["x-auth-reason"] == "missing"

    r = await client.get("/api/admin/escalation-stats", headers={"Authorization": "Bearer nonsense"})
    assert r.status_code == 401
    assert r.headers["x-auth-reason"] == "malformed"

    _, token = await make_user("plain@example.com")
    r = await client.get("/api/admin/escalation-stats", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_superadmin_passes_admin_gate(client, superadmin_token):
    r = await client.get("/api/admin/escalation-stats", headers={"Authorization": f"Bearer {superadmin_token}"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_admin_fails_superadmin_gate(client, admin_token):
    r = await client.get("/api/admin/admin-whitelist", headers={"Authorization": f"Bearer {admin_token}"})
    assert r.status_code == 403
