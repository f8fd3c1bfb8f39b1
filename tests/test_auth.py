import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import (
    AuthenticationError,
    TokenService,
    check_password,
    ensure_password_length,
    extract_token,
    hash_password,
)
from config import Settings
from database import Base
from services import EmailAlreadyRegistered, UserService


def make_settings(**overrides) -> Settings:
    values = {"database_url": "sqlite://", "token_secret": "test-secret"}
    values.update(overrides)
    return Settings(**values)


def test_token_round_trip_carries_user_id() -> None:
    tokens = TokenService(make_settings())
    assert tokens.verify(tokens.issue(42)) == 42


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = TokenService(make_settings(token_secret="other")).issue(1)

    with pytest.raises(AuthenticationError, match="not valid"):
        TokenService(make_settings()).verify(token)


def test_tampered_token_is_rejected() -> None:
    token = TokenService(make_settings()).issue(1)

    with pytest.raises(AuthenticationError):
        TokenService(make_settings()).verify(token[:-2] + "xx")


def test_expired_token_is_rejected() -> None:
    tokens = TokenService(make_settings(token_max_age_secs=-1))

    with pytest.raises(AuthenticationError, match="expired"):
        tokens.verify(tokens.issue(7))


def test_extract_token_prefers_custom_header() -> None:
    assert extract_token("abc", "Bearer def") == "abc"
    assert extract_token(None, "Bearer def") == "def"
    assert extract_token("", "bearer  ghi") == "ghi"
    with pytest.raises(AuthenticationError):
        extract_token(None, None)
    with pytest.raises(AuthenticationError):
        extract_token(None, "Basic abc")


def test_password_hash_verifies_only_the_original() -> None:
    hashed = hash_password("s3cret")
    assert hashed != "s3cret"
    assert check_password("s3cret", hashed)
    assert not check_password("wrong", hashed)
    assert not check_password("s3cret", "not-a-bcrypt-hash")


def test_signup_and_authenticate() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        users = UserService(session)
        user = users.signup("me@example.com", "hunter22")

        assert users.authenticate("me@example.com", "hunter22").id == user.id
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            users.authenticate("me@example.com", "nope")
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            users.authenticate("ghost@example.com", "hunter22")
        with pytest.raises(EmailAlreadyRegistered):
            users.signup("me@example.com", "another")


def test_password_over_bcrypt_limit_is_refused() -> None:
    assert ensure_password_length("a" * 72) == "a" * 72
    with pytest.raises(AuthenticationError, match="too long"):
        ensure_password_length("é" * 37)
    with pytest.raises(AuthenticationError, match="too long"):
        hash_password("a" * 73)
