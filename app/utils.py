"""
utils.py — Validation, Auth Helpers & Shared Utilities
Water Quality Tracker
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, Optional
from passlib.context import CryptContext
from jose import JWTError, jwt
from pydantic import (
    BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, StrictBool, StringConstraints,
    ValidationInfo, field_validator,
)
from pydantic.alias_generators import to_camel
from app.config import settings
from app.errors import InvalidToken
from app.quality import classify_record


# ── Shared helpers ────────────────────────────────────────────────────────────
def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


# ── Password hashing ──────────────────────────────────────────────────────────
_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)


def hash_password(plain: str) -> str:
    return _pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    if not plain or not hashed:
        return False
    return _pwd_ctx.verify(plain, hashed)


# ── JWT ───────────────────────────────────────────────────────────────────────
class TokenIdentity(BaseModel):
    user_id: str
    email: str


def create_access_token(user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"userId": user_id, "email": email, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> TokenIdentity:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise InvalidToken()
    if not payload.get("userId") or not payload.get("email"):
        raise InvalidToken()
    return TokenIdentity(user_id=str(payload["userId"]), email=payload["email"])


# ── Pydantic Schemas ──────────────────────────────────────────────────────────
NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Password = Annotated[str, Field(min_length=settings.PASSWORD_MIN_LENGTH)]


class ApiModel(BaseModel):
    """Request bodies use camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_email(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


Email = Annotated[EmailStr, BeforeValidator(_normalize_email)]


class UserCreate(ApiModel):
    email: Email
    password: Password
    first_name: NonBlankStr
    last_name: NonBlankStr
    confirm_password: Optional[str] = None

    @field_validator("confirm_password")
    @classmethod
    def validate_confirmation(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is not None and "password" in info.data and v != info.data["password"]:
            raise ValueError("passwords do not match")
        return v


class LoginRequest(ApiModel):
    email: Email
    password: Annotated[str, Field(min_length=1)]


class AdminUserCreate(ApiModel):
    email: Email
    password: Password
    first_name: NonBlankStr
    last_name: NonBlankStr
    is_admin: StrictBool = False
    is_active: StrictBool = True


class AdminUserUpdate(ApiModel):
    email: Email
    first_name: NonBlankStr
    last_name: NonBlankStr
    password: Optional[Password] = None
    is_admin: Optional[StrictBool] = None
    is_active: Optional[StrictBool] = None


class UserStatusUpdate(ApiModel):
    is_active: StrictBool


class WaterQualityIn(ApiModel):
    date: Optional[datetime] = None
    time: NonBlankStr
    tester: NonBlankStr
    location: NonBlankStr
    temperature: float = Field(ge=-50, le=100, allow_inf_nan=False)
    turbidity: float = Field(ge=0, le=1000, allow_inf_nan=False)
    dissolved_oxygen: float = Field(ge=0, le=20, allow_inf_nan=False)
    ph: float = Field(ge=0, le=14, allow_inf_nan=False)
    fecal_coliform: float = Field(ge=0, allow_inf_nan=False)
    site_notes: Optional[str] = None
    weather: Optional[str] = None
    additional_notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @field_validator("site_notes", "weather", "additional_notes")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def record_fields(self) -> Dict[str, Any]:
        """Replaceable fields; ``date`` is only included when supplied."""
        fields = self.model_dump(exclude={"date"})
        if self.date is not None:
            fields["date"] = self.date
        return fields


# ── Response Serializers ──────────────────────────────────────────────────────
def public_user(user: Dict) -> Dict:
    """User as returned by the API (never includes the password hash)."""
    return {
        "id": user["id"],
        "email": user["email"],
        "firstName": user["first_name"],
        "lastName": user["last_name"],
        "isAdmin": user["is_admin"],
        "isActive": user["is_active"],
        "registrationDate": user["registration_date"],
        "lastLogin": user["last_login"],
        "registrationSource": user.get("registration_source"),
        "ipAddress": user.get("ip_address"),
        "userAgent": user.get("user_agent"),
    }


def public_record(record: Dict) -> Dict:
    return {
        "id": record["id"],
        "date": record["date"],
        "time": record["time"],
        "tester": record["tester"],
        "location": record["location"],
        "temperature": record["temperature"],
        "turbidity": record["turbidity"],
        "dissolvedOxygen": record["dissolved_oxygen"],
        "ph": record["ph"],
        "fecalColiform": record["fecal_coliform"],
        "siteNotes": record.get("site_notes"),
        "weather": record.get("weather"),
        "additionalNotes": record.get("additional_notes"),
        "createdBy": record.get("created_by"),
        "createdAt": record.get("created_at"),
        "updatedAt": record.get("updated_at"),
        "qualityStatus": classify_record(record).value,
    }
