from datetime import datetime, timedelta, timezone

import pytest

from quakewatch.core.reset_tokens import ResetTokenManager
from quakewatch.core.security import PasswordHasher, validate_password


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


# ============================================================================
# PASSWORD HASHING TESTS
# ============================================================================


def test_verify_accepts_matching_password(hasher: PasswordHasher):
    digest = hasher.hash("Passw0rd!")
    assert hasher.verify("Passw0rd!", digest) is True


def test_verify_rejects_other_password(hasher: PasswordHasher):
    digest = hasher.hash("Passw0rd!")
    assert hasher.verify("Passw0rd?", digest) is False


def test_hash_is_salted(hasher: PasswordHasher):
    assert hasher.hash("Passw0rd!") != hasher.hash("Passw0rd!")


def test_hash_never_contains_plaintext(hasher: PasswordHasher):
    digest = hasher.hash("Passw0rd!")
    assert "Passw0rd!" not in digest
    assert digest.startswith("$2")


def test_verify_malformed_digest_is_plain_mismatch(hasher: PasswordHasher):
    assert hasher.verify("Passw0rd!", "not-a-bcrypt-hash") is False
    assert hasher.verify("Passw0rd!", "") is False
    assert hasher.verify("Passw0rd!", None) is False


def test_cost_factor_is_configurable():
    digest = PasswordHasher(rounds=5).hash("Passw0rd!")
    assert "$05$" in digest


def test_dummy_verify_always_fails(hasher: PasswordHasher):
    assert hasher.dummy_verify("dummy-password-for-timing") is False


# ============================================================================
# PASSWORD POLICY TESTS
# ============================================================================


@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Sh0rt!", "at least 8 characters"),
        ("password123!", "uppercase"),
        ("PASSWORD123!", "lowercase"),
        ("Password!", "number"),
        ("Password123", "symbol"),
    ],
)
def test_validate_password_rejects_weak_passwords(password: str, fragment: str):
    is_valid, message = validate_password(password)
    assert is_valid is False
    assert fragment in message


def test_validate_password_accepts_strong_password():
    assert validate_password("Passw0rd!") == (True, None)


# ============================================================================
# RESET TOKEN TESTS
# ============================================================================


def test_reset_token_is_random_hex_with_expiry():
    manager = ResetTokenManager(ttl=timedelta(hours=1))
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    first = manager.issue(now=now)
    second = manager.issue(now=now)

    assert len(first.value) == 64
    int(first.value, 16)
    assert first.value != second.value
    assert first.expires_at == now + timedelta(hours=1)


def test_reset_token_digest_hides_value():
    manager = ResetTokenManager()
    token = manager.issue()
    assert token.digest == manager.digest(token.value)
    assert token.digest != token.value


def test_reset_token_expiry_boundaries():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert ResetTokenManager.is_expired(now - timedelta(seconds=1), now=now) is True
    assert ResetTokenManager.is_expired(now, now=now) is True
    assert ResetTokenManager.is_expired(now + timedelta(minutes=5), now=now) is False
    assert ResetTokenManager.is_expired(None, now=now) is True


def test_reset_token_expiry_treats_naive_datetimes_as_utc():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    naive_future = datetime(2026, 1, 1, 12, 30)
    assert ResetTokenManager.is_expired(naive_future, now=now) is False


def test_validate_password_limits_encoded_length():
    # 39 characters, 73 bytes: bcrypt would drop the final character.
    too_long = "Aa1!" + "é" * 34 + "X"
    is_valid, message = validate_password(too_long)
    assert is_valid is False
    assert "72 bytes" in message

    assert validate_password("Aa1!" + "é" * 34) == (True, None)
