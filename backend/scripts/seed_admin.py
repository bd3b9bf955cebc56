#!/usr/bin/env python3
"""
Operator Bootstrap Script
Creates the occurrence tables and prints the ADMIN_PASSWORD_HASH value for the
operator password.

Usage:
    python -m scripts.seed_admin <password>

Example:
    python -m scripts.seed_admin securepassword123
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from imago.database import init_db
from imago.auth import hash_password, verify_password

MIN_PASSWORD_LENGTH = 8


def bootstrap(password: str, create_tables: bool = True) -> str:
    """Create tables (optionally) and return the bcrypt hash of the password."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    if create_tables:
        init_db()

    password_hash = hash_password(password)
    if not verify_password(password, password_hash):
        raise RuntimeError("Generated hash does not verify")
    return password_hash


def main():
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)

    try:
        password_hash = bootstrap(sys.argv[1])
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("Tables ready. Set this in the service environment:")
    print(f"  ADMIN_PASSWORD_HASH='{password_hash}'")
    sys.exit(0)


if __name__ == "__main__":
    main()
