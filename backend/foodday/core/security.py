import jwt
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from foodday.core.config import settings

# tokens are issued by the identity service; this module only reads them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> dict:
    data = decode_token(token)
    if not data.get("sub") or not data.get("role"):
        raise HTTPException(status_code=401, detail="Token missing subject or role")
    return {"id": data["sub"], "role": data["role"]}

def require_roles(roles: list[str]):
    async def checker(actor=Depends(get_current_actor)):
        if actor["role"] != "admin" and actor["role"] not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return actor
    return checker

def ensure_owner(resource_owner_id, actor: dict):
    if actor["role"] != "admin" and resource_owner_id != actor["id"]:
        raise HTTPException(status_code=403, detail="Not the owner of this resource")
