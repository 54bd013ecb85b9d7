"""Bearer token verification for chat clients.

Tokens are minted by the identity service; this side only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass

import jwt

from safechat.settings import settings

TOKEN_ISSUER = "safechat-api"
TOKEN_AUDIENCE = "safechat-clients"
CLOCK_SKEW_SECONDS = 5


@dataclass(frozen=True, slots=True)
class AccessClaims:
    subject: str
    roles: tuple[str, ...] = ()


def parse_roles(claim: object) -> tuple[str, ...]:
    """Accept roles as a list claim or a comma separated string."""
    if isinstance(claim, (list, tuple)):
        values = [str(role) for role in claim]
    elif isinstance(claim, str):
        values = claim.split(",")
    else:
        return ()
    return tuple(role.strip() for role in values if role.strip())


def read_access_token(token: str) -> AccessClaims:
    """Verify ``token`` and return who it speaks for.

    Any signature, audience, issuer or expiry problem surfaces as ``jwt.InvalidTokenError``.
    """
    claims = jwt.decode(
        token,
        settings.secret_key,
        algorithms=["HS256"],
        audience=TOKEN_AUDIENCE,
        issuer=TOKEN_ISSUER,
        leeway=CLOCK_SKEW_SECONDS,
        options={"require": ["exp", "sub"]},
    )
    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise jwt.InvalidTokenError("empty_subject")
    return AccessClaims(subject=subject, roles=parse_roles(claims.get("roles", claims.get("role"))))
