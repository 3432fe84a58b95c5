from typing import Optional

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def verify_token(request: Request, authorization: Optional[str] = Header(None)):
    """Require an HS256 bearer token when CHECKOUT_JWT_SECRET is configured."""
    secret = request.app.state.settings.jwt_secret
    if not secret:
        return None
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
