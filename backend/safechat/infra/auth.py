"""Authentication helpers for FastAPI endpoints.

A bearer JWT is required outside development. In development the
X-User-Id / X-User-Roles headers are accepted for local tools and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from safechat.infra.jwt import parse_roles, read_access_token
from safechat.settings import settings

MODERATOR_ROLES = ("admin", "moderator")


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_moderator(self) -> bool:
		return any(role in self.roles for role in MODERATOR_ROLES)


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		claims = read_access_token(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None
	return AuthenticatedUser(id=claims.subject, roles=claims.roles)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip(), roles=parse_roles(x_user_roles))
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def require_roles(*required: Iterable[str]):
	"""Return a dependency that enforces the presence of any of the given roles."""
	required_set = {str(r).strip() for r in required if str(r).strip()}

	async def _dep(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
		if not required_set or any(user.has_role(r) for r in required_set):
			return user
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")

	return _dep


require_moderator = require_roles(*MODERATOR_ROLES)
