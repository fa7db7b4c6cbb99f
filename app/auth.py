import hmac
import os
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
NONCE_EXPIRE_MINUTES = int(os.getenv("NONCE_EXPIRE_MINUTES", 1440))

# Accept USERNAME/PASSWORD or ADMIN_* (either works)
ADMIN_USERNAME = (os.getenv("ADMIN_USERNAME") or os.getenv("USERNAME") or "").strip()
ADMIN_PASSWORD = (os.getenv("ADMIN_PASSWORD") or os.getenv("PASSWORD") or "").strip()

if not SECRET_KEY:
    raise RuntimeError("SECRET_KEY is not set")
if not ADMIN_USERNAME or not ADMIN_PASSWORD:
    raise RuntimeError("Set USERNAME/PASSWORD (or ADMIN_USERNAME/ADMIN_PASSWORD) in .env")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")

def authenticate_user(username: str, password: str) -> bool:
    return hmac.compare_digest(username or "", ADMIN_USERNAME) and \
           hmac.compare_digest(password or "", ADMIN_PASSWORD)

def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def get_current_user(token: str = Depends(oauth2_scheme)):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("nonce_for"):
        # Tracker nonces are public; they must never unlock admin routes
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload.get("sub")

# Anti-forgery nonce handed to scanners, bound to one action
def create_nonce(action: str, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=NONCE_EXPIRE_MINUTES))
    return jwt.encode({"nonce_for": action, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)

def verify_nonce(token, action: str) -> bool:
    if not token or not isinstance(token, str):
        return False
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return False
    return hmac.compare_digest(str(payload.get("nonce_for") or ""), action)
