from fastapi import Header, Request
from jose import JWTError, jwt

from storefront.errors import AuthenticationError


def verify_token(request: Request, authorization: str = Header(None)) -> dict:
    """Decodes the bearer token issued to the signed-in shopper or admin."""
    secret = request.app.state.settings.jwt_secret
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError("unsupported authorization")
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except (AttributeError, ValueError, JWTError):
        raise AuthenticationError("Invalid or missing token")
    if not claims.get("sub"):
        raise AuthenticationError("Invalid or missing token")
    return claims
