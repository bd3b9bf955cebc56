"""Tests for the operator bootstrap script."""
import pytest

from imago.auth import verify_password
from scripts.seed_admin import bootstrap


def test_hash_verifies():
    password_hash = bootstrap("securepassword123", create_tables=False)
    assert verify_password("securepassword123", password_hash)
    assert not verify_password("wrong-password", password_hash)


def test_short_password_rejected():
    with pytest.raises(ValueError):
        bootstrap("short", create_tables=False)
