import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv
from fastapi import Header, HTTPException
from jose import JWTError, jwt

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

ALGORITHM = "HS256"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(user_id: str, role: str = "user") -> str:
    return jwt.encode({"sub": user_id, "role": role}, os.getenv("JWT_SECRET"), algorithm=ALGORITHM)


def verify_token(authorization: str = Header(...)) -> CurrentUser:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        claims = jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=[ALGORITHM])
        user_id = claims["sub"]
    except (ValueError, KeyError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return CurrentUser(id=str(user_id), role=claims.get("role") or "user")
