from datetime import datetime, timedelta, timezone
import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from . import schemas, models, database
from .config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


class TokenError(Exception):
    """A token that is malformed, of the wrong type, or expired."""

    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.expired = expired


def _encode_token(claims: dict, token_type: str, lifetime: timedelta) -> str:
    payload = dict(claims, type=token_type, exp=datetime.now(timezone.utc) + lifetime)
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, expected_type: str) -> schemas.TokenData:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError as exc:
        raise TokenError("expired", expired=True) from exc
    except JWTError as exc:
        raise TokenError("invalid") from exc

    user_id = payload.get("sub")
    if payload.get("type") != expected_type or user_id is None or payload.get("role") is None:
        raise TokenError("invalid")
    return schemas.TokenData(email=payload.get("email"), user_id=int(user_id), role=payload["role"])


def issue_tokens(user: models.User) -> dict:
    claims = {"sub": str(user.id), "email": user.email, "role": user.role.value}
    return {
        "access_token": _encode_token(claims, "access", timedelta(minutes=settings.access_token_expire_minutes)),
        "refresh_token": _encode_token(claims, "refresh", timedelta(minutes=settings.refresh_token_expire_minutes)),
        "token_type": "bearer",
        "role": user.role,
        "user_id": user.id,
    }


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        token_data = decode_token(token, "access")
    except TokenError as exc:
        if exc.expired:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session expired. Please sign in again.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        raise credentials_exception
    user = db.query(models.User).filter(models.User.id == token_data.user_id).first()
    if user is None:
        raise credentials_exception
    return user


def get_optional_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    if not token:
        return None
    try:
        return get_current_user(token, db)  # type: ignore
    except HTTPException:
        return None


def is_admin(user: models.User | None) -> bool:
    if not user:
        return False
    if getattr(user, "role", None) == models.UserRole.admin:
        return True
    if user.email and settings.admin_emails:
        return user.email.strip().lower() in set(settings.admin_emails)
    return False


def require_admin(user: models.User = Depends(get_current_user)):
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access only.")
    return user
