"""
Bearer token authentication for the powerstats API.

BearerAuth is built once at startup from the token -> location map that
Settings has already parsed and validated (see config.parse_location_tokens).
Tokens are kept only as SHA-256 digests. A presented token is hashed and
compared against every stored digest with hmac.compare_digest, so the
comparison time depends neither on where the token differs nor on its
length, and no lookup stops early on a match.

CHANGELOG:
- 2026-03-12: Parsing moved to config; match on fixed-length digests
  (STORY-113)
- 2026-02-28: Tokens map to locations (STORY-103)

TODO:
- None
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping

from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)


def _digest(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).digest()


class BearerAuth:
    """FastAPI dependency resolving a bearer token to its location.

    Args:
        token_map: Mapping of token -> canonical location key.
    """

    def __init__(self, token_map: Mapping[str, str]) -> None:
        self._entries = [
            (_digest(token), location) for token, location in token_map.items()
        ]
        self.scheme = HTTPBearer(auto_error=False)

    @property
    def locations(self) -> frozenset[str]:
        """Locations that at least one token grants access to."""
        return frozenset(location for _, location in self._entries)

    def location_for(self, token: str) -> str | None:
        """Return the location *token* grants, or None if it is unknown."""
        if not token:
            return None
        presented = _digest(token)
        found: str | None = None
        for digest, location in self._entries:
            if hmac.compare_digest(presented, digest):
                found = location
        return found

    async def verify(self, request: Request) -> str:
        """Validate the Authorization header and return the location.

        Raises:
            HTTPException: 401 if the header is missing, is not a bearer
                credential, or carries an unknown token.
        """
        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)
        if credentials is None:
            raise HTTPException(
                status_code=401,
                detail="Missing authorization credentials.",
                headers={"WWW-Authenticate": "Bearer"},
            )

        location = self.location_for(credentials.credentials)
        if location is None:
            logger.info("Rejected bearer token for %s", request.url.path)
            raise HTTPException(
                status_code=401,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return location
