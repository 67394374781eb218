from msgspec import Struct

from common.errors import ForbiddenError, UnauthorizedError

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"


class Principal(Struct, frozen=True):
    """The authenticated caller as forwarded by the gateway.

    Passed explicitly to every operation that acts on behalf of a user and to
    every outbound call that must carry the caller's credentials.
    """
    user_id: int
    roles: frozenset[str] = frozenset()
    token: str | None = None
    email: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(ROLE_ADMIN)

    def auth_headers(self) -> dict[str, str]:
        headers = {
            "X-User-Id": str(self.user_id),
            "X-User-Roles": ",".join(sorted(self.roles)),
        }
        if self.token:
            headers["Authorization"] = self.token
        if self.email:
            headers["X-User-Email"] = self.email
        return headers


def principal_from_headers(headers) -> Principal:
    raw_user_id = headers.get("X-User-Id")
    if not raw_user_id:
        raise UnauthorizedError("Missing authenticated user")
    try:
        user_id = int(raw_user_id)
    except ValueError:
        raise UnauthorizedError(f"Invalid user id: {raw_user_id}")
    roles = frozenset(r.strip().upper() for r in headers.get("X-User-Roles", "").split(",") if r.strip())
    return Principal(
        user_id=user_id,
        roles=roles,
        token=headers.get("Authorization") or None,
        email=headers.get("X-User-Email") or None,
    )


def require_role(principal: Principal, role: str):
    if not principal.has_role(role):
        raise ForbiddenError(f"Role {role} required")


def require_self_or_admin(principal: Principal, user_id: int):
    if principal.user_id != user_id and not principal.is_admin:
        raise ForbiddenError(f"User {principal.user_id} cannot access data of user {user_id}")
