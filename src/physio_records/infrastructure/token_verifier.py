"""Supabase access token verification.

Supabase Auth issues HS256-signed JWTs. The service verifies them locally with
the project's JWT secret and turns the claims into a Principal.

Security Impact:
    - Signature, expiry and audience are always checked
    - The subject must be a UUID (auth.users id); anything else is rejected
    - Token contents are never logged
"""

import logging
import uuid
from typing import Any, Dict, Optional

import jwt

from physio_records.domain.ports import ErrorKind, Principal, Result, TokenVerifierPort
from physio_records.infrastructure.config_manager import SupabaseConfig

logger = logging.getLogger(__name__)

INVALID_TOKEN_CODE = "invalid_token"
SUPPORTED_ALGORITHMS = ["HS256"]


def _subject(claims: Dict[str, Any]) -> Optional[str]:
    for claim in ("sub", "user_id"):
        value = claims.get(claim)
        if not value:
            continue
        try:
            return str(uuid.UUID(str(value)))
        except ValueError:
            return None
    return None


class SupabaseJwtVerifier(TokenVerifierPort):
    """Verifies Supabase Auth access tokens with PyJWT.

    Parameters:
        config: Supabase configuration holding the JWT secret and audience
        leeway: Allowed clock skew in seconds for ``exp``/``nbf``
    """

    def __init__(self, config: SupabaseConfig, leeway: int = 30):
        self._secret = config.jwt_secret
        self._audience = config.jwt_audience
        self._leeway = leeway

    def verify(self, token: str) -> Result[Principal]:
        """Verify a bearer token.

        Parameters:
            token: Raw JWT

        Returns:
            Result containing the Principal, or UNAUTHENTICATED
        """
        if not token:
            return Result.failure_result(INVALID_TOKEN_CODE, ErrorKind.UNAUTHENTICATED)

        try:
            claims = jwt.decode(
                token,
                self._secret.get_secret_value(),
                algorithms=SUPPORTED_ALGORITHMS,
                audience=self._audience,
                leeway=self._leeway,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired access token")
            return Result.failure_result(
                INVALID_TOKEN_CODE, ErrorKind.UNAUTHENTICATED, {"reason": "expired"}
            )
        except jwt.InvalidAudienceError:
            logger.warning("Rejected access token with unexpected audience")
            return Result.failure_result(
                INVALID_TOKEN_CODE, ErrorKind.UNAUTHENTICATED, {"reason": "audience"}
            )
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected access token: {type(e).__name__}")
            return Result.failure_result(
                INVALID_TOKEN_CODE, ErrorKind.UNAUTHENTICATED, {"reason": "invalid"}
            )

        user_id = _subject(claims)
        if user_id is None:
            return Result.failure_result(
                INVALID_TOKEN_CODE, ErrorKind.UNAUTHENTICATED, {"reason": "subject"}
            )

        return Result.success_result(Principal(
            user_id=user_id,
            access_token=token,
            email=claims.get("email"),
        ))
