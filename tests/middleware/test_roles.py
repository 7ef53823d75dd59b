# tests/middleware/test_roles.py
"""Tests for the role guard stages."""

import pytest

from coursechain.middleware.pipeline import HandlerResult, Principal, RequestContext
from coursechain.middleware.roles import (
    RoleGuard,
    require_admin,
    require_instructor,
    require_instructor_or_admin,
    require_role,
)

ADDRESS = "0x" + "cd" * 20


async def _ok(context: RequestContext) -> HandlerResult:
    return HandlerResult(200, {"role": context.principal.role})


def _ctx(role: str | None) -> RequestContext:
    principal = Principal(id="u1", address=ADDRESS, role=role) if role else None
    return RequestContext(method="GET", path="/api/v1/audit/logs", principal=principal)


@pytest.mark.asyncio
async def test_anonymous_caller_is_unauthorized() -> None:
    result = await require_admin()(_ok)(_ctx(None))
    assert result.status_code == 401
    assert result.body == {"detail": "Authentication required"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("guard", "role", "expected"),
    [
        (require_admin(), "admin", 200),
        (require_admin(), "instructor", 403),
        (require_instructor(), "instructor", 200),
        (require_instructor(), "admin", 403),
        (require_instructor_or_admin(), "admin", 200),
        (require_instructor_or_admin(), "instructor", 200),
        (require_instructor_or_admin(), "student", 403),
        (require_role("student"), "student", 200),
    ],
)
async def test_role_matrix(guard: RoleGuard, role: str, expected: int) -> None:
    result = await guard(_ok)(_ctx(role))
    assert result.status_code == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("guard", "detail"),
    [
        (require_admin(), "Admin access required"),
        (require_instructor(), "Instructor access required"),
        (require_instructor_or_admin(), "Instructor or Admin access required"),
        (require_role("instructor", "admin"), "Access denied. Required role: instructor or admin"),
    ],
)
async def test_denial_messages(guard: RoleGuard, detail: str) -> None:
    result = await guard(_ok)(_ctx("student"))
    assert result.status_code == 403
    assert result.body == {"detail": detail}


@pytest.mark.parametrize("roles", [(), ("superuser",), ("admin", "owner")])
def test_unknown_roles_are_rejected(roles: tuple[str, ...]) -> None:
    with pytest.raises(ValueError):
        RoleGuard(*roles)
