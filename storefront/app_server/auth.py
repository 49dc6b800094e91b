# storefront/app_server/auth.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from jose import JWTError, jwt
from starlette.requests import Request

from storefront.config import Settings
from storefront.contracts.errors import AuthorizationError

logger = logging.getLogger(__name__)

DEV_USER = "dev-user"


def extract_bearer(request: Request) -> str:
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return ""


@dataclass(frozen=True)
class AdminPolicy:
    """
    Who may use /admin. Built once from Settings at startup.

      no / invalid credential                 -> 401
      allowlist set, user not on it           -> 403
      no allowlist, production                -> 503 (fail closed)
      no allowlist, anywhere else             -> allowed
      BYPASS_AUTH outside production          -> allowed as dev-user
    """

    admin_user_ids: FrozenSet[str] = field(default_factory=frozenset)
    production: bool = False
    bypass: bool = False
    jwt_secret: str = ""
    jwt_audience: str = ""
    jwt_issuer: str = ""
    jwt_alg: str = "HS256"

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdminPolicy":
        bypass = settings.bypass_auth
        if bypass and settings.is_production:
            logger.error(
                "BYPASS_AUTH is enabled in production; ignoring it",
                extra={"context": "auth.startup"},
            )
            bypass = False
        if not settings.admin_user_ids:
            if settings.is_production:
                logger.error(
                    "ADMIN_USER_IDS is not configured; admin access will be denied to all users",
                    extra={"context": "auth.startup"},
                )
            else:
                logger.warning(
                    "ADMIN_USER_IDS is not configured; any authenticated user can use admin outside production",
                    extra={"context": "auth.startup"},
                )
        return cls(
            admin_user_ids=frozenset(settings.admin_user_ids),
            production=settings.is_production,
            bypass=bypass,
            jwt_secret=settings.auth_jwt_secret,
            jwt_audience=settings.auth_jwt_audience,
            jwt_issuer=settings.auth_jwt_issuer,
            jwt_alg=settings.auth_jwt_alg,
        )

    def identify(self, token: str) -> Optional[str]:
        if not token or not self.jwt_secret:
            return None
        options = {"verify_aud": bool(self.jwt_audience)}
        try:
            claims = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_alg],
                audience=self.jwt_audience or None,
                issuer=self.jwt_issuer or None,
                options=options,
            )
        except JWTError as e:
            logger.info("rejected admin token: %s", e, extra={"context": "auth.identify"})
            return None
        sub = claims.get("sub")
        return str(sub) if sub else None

    def check(self, user_id: Optional[str]) -> str:
        if self.bypass:
            return user_id or DEV_USER
        if not user_id:
            raise AuthorizationError("Authentication required", status_code=401, code="unauthenticated")
        if self.admin_user_ids:
            if user_id not in self.admin_user_ids:
                raise AuthorizationError("You don't have access to the admin area", status_code=403, code="forbidden")
            return user_id
        if self.production:
            raise AuthorizationError(
                "Admin access is not configured. Contact the site administrator.",
                status_code=503,
                code="admin_not_configured",
            )
        return user_id

    def authorize(self, request: Request) -> str:
        return self.check(self.identify(extract_bearer(request)))
