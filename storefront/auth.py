"""Admin authentication: bcrypt password hashes and JWT bearer tokens."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from storefront import config, ids
from storefront.catalog import Catalog, get_catalog
from storefront.schemas import ADMINS

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/login")


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AdminOut(BaseModel):
    id: str
    name: str
    email: EmailStr


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def authenticate_admin(catalog, email: str, password: str) -> Optional[dict]:
    docs = catalog.find(ADMINS, {"email": email, "is_active": True}, limit=1)["docs"]
    if not docs or not verify_password(password, docs[0].get("password_hash", "")):
        return None
    return docs[0]


def admin_from_token(catalog, token: str) -> AdminOut:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        admin_id: str = payload.get("sub")
        if admin_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    admin = catalog.find_by_id(ADMINS, admin_id)
    if not admin or not admin.get("is_active", True):
        raise credentials_exception
    return AdminOut(id=ids.normalize(admin), name=admin.get("name"), email=admin.get("email"))


def get_current_admin(token: str = Depends(oauth2_scheme), catalog: Catalog = Depends(get_catalog)) -> AdminOut:
    return admin_from_token(catalog, token)
