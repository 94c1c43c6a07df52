from dataclasses import dataclass
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from boxoffice.core.security import decode_token
from boxoffice.services.payment_gateway import StripeGateway, get_gateway

bearer = HTTPBearer(auto_error=False)

@dataclass
class CurrentUser:
    id: str
    role: str = "customer"

def get_current_user(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> CurrentUser:
    # Identity is owned by the auth service; we only trust its signed token.
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return CurrentUser(id=str(user_id), role=str(payload.get("role") or "customer"))

def require_roles(*roles: str):
    def _guard(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

def gateway_dep() -> StripeGateway:
    return get_gateway()
