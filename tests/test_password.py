"""Password hashing tests."""

import pytest

from tenantauth.auth.password import PasswordHasher


@pytest.fixture(scope="module")
def hasher():
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1)


def test_hash_and_verify(hasher):
    hashed = hasher.hash("secure_password")
    assert hashed.startswith("$argon2id$")
    assert hasher.verify(hashed, "secure_password")
    assert not hasher.verify(hashed, "wrong_password")


def test_hash_is_salted(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_verify_never_raises_on_junk(hasher):
    assert not hasher.verify("not-a-hash", "whatever")
    assert not hasher.verify("", "whatever")


def test_verify_dummy_always_false(hasher):
    assert hasher.verify_dummy("anything") is False


def test_non_argon2_hash_never_verifies(hasher):
    # e.g. a bcrypt string from some other system
    foreign = "$2b$04$abcdefghijklmnopqrstuuMPbUVbOCyFIMd4mBtMnDkYzUGFq3Bb6"
    assert not hasher.verify(foreign, "old_password")
    assert hasher.needs_rehash(foreign)


def test_needs_rehash(hasher):
    assert not hasher.needs_rehash(hasher.hash("pw"))
    stronger = PasswordHasher(time_cost=2, memory_cost=1024, parallelism=1)
    assert stronger.needs_rehash(hasher.hash("pw"))
    # ...but still verifies the older hash
    assert stronger.verify(hasher.hash("pw"), "pw")


def test_from_settings(settings):
    hasher = PasswordHasher.from_settings(settings)
    assert "m=1024,t=1,p=1" in hasher.hash("pw")
