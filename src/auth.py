"""
Session token handling for the ISDA Soil API.

The ISDA API issues a JWT from its /login endpoint. We never verify that token
(we are its consumer, not its audience), we only need to know when it expires
so the client can refresh it shortly before the API starts rejecting it.

Token structure (JWT payload), as issued by the API:
    {
        "sub": "username",
        "exp": 1738800000               # Unix timestamp, seconds
    }

When the token cannot be decoded or carries no usable "exp" claim, it is
assumed to live for one hour from the moment it was obtained.
"""

import math
from dataclasses import dataclass

import jwt

# Tokens are refreshed once fewer than this many seconds remain.
TOKEN_REFRESH_MARGIN_SECONDS = 60.0

# Lifetime assumed when the expiry cannot be read from the token.
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600.0


@dataclass(frozen=True)
class SessionToken:
    """
    A bearer token obtained from the login endpoint.

    Attributes:
        access_token: The opaque bearer string sent in the Authorization header
        expires_at: Absolute expiry instant, seconds since the epoch
    """

    access_token: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        """True while more than TOKEN_REFRESH_MARGIN_SECONDS remain before expiry."""
        return now < self.expires_at - TOKEN_REFRESH_MARGIN_SECONDS

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


def decode_token_expiry(access_token: str, now: float) -> float:
    """
    Read the expiry instant from a JWT without verifying its signature.

    Args:
        access_token: The raw token string ("header.payload.signature")
        now: Current time, seconds since the epoch

    Returns:
        The token's "exp" claim, or now + DEFAULT_TOKEN_LIFETIME_SECONDS if the
        token is not a decodable JWT or has no positive numeric "exp" claim.
    """
    fallback = now + DEFAULT_TOKEN_LIFETIME_SECONDS

    try:
        # With verify_signature disabled PyJWT also skips the exp/nbf/iat checks,
        # so an already expired token still decodes.
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return fallback

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return fallback
    if not math.isfinite(exp) or exp <= 0:
        return fallback

    return float(exp)
