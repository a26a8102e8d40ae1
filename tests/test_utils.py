from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from pydantic import ValidationError

from app.config import settings
from app.errors import InvalidToken
from app.utils import (
    AdminUserUpdate, UserCreate, WaterQualityIn, create_access_token, decode_token,
    hash_password, public_user, verify_password,
)
from tests.conftest import make_reading_payload, make_user_payload


def test_hash_and_verify_password():
    hashed = hash_password("testpassword123")

    assert hashed != "testpassword123"
    assert verify_password("testpassword123", hashed)
    assert not verify_password("wrong-password", hashed)
    assert not verify_password("", hashed)


def test_token_round_trip():
    token = create_access_token("abc123", "river@example.com")

    identity = decode_token(token)

    assert identity.user_id == "abc123"
    assert identity.email == "river@example.com"


def test_token_payload_claims():
    token = create_access_token("abc123", "river@example.com")

    claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])

    assert set(claims) == {"userId", "email", "exp"}
    lifetime = datetime.fromtimestamp(claims["exp"], timezone.utc) - datetime.now(timezone.utc)
    assert timedelta(hours=23) < lifetime <= timedelta(hours=24)


def test_expired_token_is_rejected():
    token = create_access_token("abc123", "river@example.com", expires_delta=timedelta(seconds=-1))

    with pytest.raises(InvalidToken):
        decode_token(token)


def test_tampered_token_is_rejected():
    token = create_access_token("abc123", "river@example.com")
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(InvalidToken):
        decode_token(tampered)


def test_token_without_user_id_is_rejected():
    token = jwt.encode({"email": "river@example.com"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    with pytest.raises(InvalidToken):
        decode_token(token)


def test_email_is_normalized():
    payload = UserCreate(**make_user_payload(email="  Mixed.Case@Example.COM "))

    assert payload.email == "mixed.case@example.com"


def test_names_are_trimmed():
    payload = UserCreate(**make_user_payload(firstName="  Ada ", lastName=" Lovelace"))

    assert payload.first_name == "Ada"
    assert payload.last_name == "Lovelace"


def test_admin_update_password_is_optional():
    update = AdminUserUpdate(email="a@example.com", firstName="A", lastName="B")

    assert update.password is None
    assert update.is_admin is None

    with pytest.raises(ValidationError):
        AdminUserUpdate(email="a@example.com", firstName="A", lastName="B", password="123")


def test_record_fields_omit_date_unless_supplied():
    without_date = WaterQualityIn(**make_reading_payload())
    with_date = WaterQualityIn(**make_reading_payload(date="2024-06-01T07:15:00"))

    assert "date" not in without_date.record_fields()
    assert with_date.record_fields()["date"] == datetime(2024, 6, 1, 7, 15)


def test_aware_dates_become_naive_utc():
    reading = WaterQualityIn(**make_reading_payload(date="2024-06-01T09:15:00+02:00"))

    assert reading.date == datetime(2024, 6, 1, 7, 15)
    assert reading.date.tzinfo is None


def test_blank_optional_text_becomes_none():
    reading = WaterQualityIn(**make_reading_payload(siteNotes="   ", weather="", additionalNotes=" Windy "))

    fields = reading.record_fields()
    assert fields["site_notes"] is None
    assert fields["weather"] is None
    assert fields["additional_notes"] == "Windy"


@pytest.mark.parametrize("value", ["nan", "inf", float("-inf")])
def test_non_finite_measurements_are_rejected(value):
    with pytest.raises(ValidationError):
        WaterQualityIn(**make_reading_payload(turbidity=value))


def test_public_user_hides_password_hash():
    now = datetime(2024, 1, 1)
    row = {
        "id": "u1", "email": "a@example.com", "password_hash": "secret", "first_name": "A",
        "last_name": "B", "is_admin": False, "is_active": True, "registration_date": now,
        "last_login": now,
    }

    shown = public_user(row)

    assert "password_hash" not in shown
    assert "secret" not in shown.values()
    assert shown["firstName"] == "A"
