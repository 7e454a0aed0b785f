"""
Bearer token validation for node to node calls
"""

from typing import Optional
import hmac

import structlog

logger = structlog.get_logger(__name__)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an Authorization header, if it is a bearer header"""

    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class NodeTokenValidator:
    """Checks inbound node calls against the configured shared token

    With no token configured every call is accepted.
    """

    def __init__(self, expected_token: Optional[str] = None):
        self.expected_token = expected_token

    @property
    def enabled(self) -> bool:
        return bool(self.expected_token)

    def validate(self, authorization: Optional[str]) -> bool:
        """Validate an Authorization header"""

        if not self.enabled:
            return True

        token = bearer_token(authorization)
        if token is None:
            logger.warning("Node call without bearer token")
            return False

        valid = hmac.compare_digest(token.encode(), self.expected_token.encode())
        if not valid:
            logger.warning("Node call with invalid token", token_prefix=token[:4])
        return valid

    def verify(self, authorization: Optional[str]):
        """Raise ValueError when the header is not accepted"""

        if not self.validate(authorization):
            raise ValueError("Invalid node token")
