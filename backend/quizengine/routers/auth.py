from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import math
import uuid

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field

from ..settings import Settings
from sqlalchemy.orm import Session
from ..db import Database, get_db
from ..models import AuthUser, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


def _app_settings(request: Request) -> Settings:
	return request.app.state.settings


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def ensure_seed_user(database: Database, settings: Settings) -> None:
	username = settings.seed_username
	password = settings.seed_password_plain
	if not username or not password:
		return
	with database.session() as db:
		if db.get(AuthUser, username) is None:
			db.add(AuthUser(username=username, password_hash=hash_password(password)))
			db.commit()
			logger.info("seeded user %s", username)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	user_row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if user_row and verify_password(password, user_row.password_hash):
		return User(username=username)
	return None


def _resolve_expiry(settings: Settings, expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		# Cap at far future but within datetime bounds
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(settings: Settings, data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(settings, expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _login_key(request: Request) -> str:
	return request.client.host if request.client else "unknown"


@router.post("/token", response_model=Token)
def login(
	request: Request,
	form_data: OAuth2PasswordRequestForm = Depends(),
	db: Session = Depends(get_db),
	settings: Settings = Depends(_app_settings),
):
	# Only failed attempts count against the client
	limiter = request.app.state.login_limiter
	key = _login_key(request)
	wait = limiter.retry_after(key)
	if wait is not None:
		logger.warning("login blocked for %s after repeated failures", key)
		raise HTTPException(
			status_code=429,
			detail="Too many login attempts",
			headers={"Retry-After": str(max(1, math.ceil(wait)))},
		)
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		limiter.record(key)
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	# Create a new session id (jti) and persist server-side
	session_id = uuid.uuid4().hex
	access_token = create_access_token(settings, {"sub": user.username, "jti": session_id})
	db.merge(AuthSession(session_id=session_id, username=user.username))
	db.commit()
	return Token(access_token=access_token)


def get_current_user(
	token: str = Depends(oauth2_scheme),
	db: Session = Depends(get_db),
	settings: Settings = Depends(_app_settings),
) -> User:
	credentials_exception = HTTPException(
		status_code=401, detail="Could not validate credentials", headers={"WWW-Authenticate": "Bearer"}
	)
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist so a token can be revoked server-side
	row = db.get(AuthSession, jti)
	if not row or row.username != username:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return User(username=username)


@router.get("/me", response_model=User)
def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	username: str = Field(min_length=3, max_length=128)
	password: str = Field(min_length=1)
	email: Optional[str] = None


@router.post("/register", status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = req.username.strip()
	if len(username) < 3:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	existing = db.query(AuthUser).filter(AuthUser.username == username).first()
	if existing:
		raise HTTPException(status_code=409, detail="username already exists")
	email = (req.email or "").strip() or None
	db.add(AuthUser(username=username, password_hash=hash_password(req.password), email=email))
	db.commit()
	return {"ok": True}
