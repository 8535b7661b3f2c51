"""
Access code hashing. Codes are only ever stored and compared as bcrypt hashes.
"""

import bcrypt

from . import config


def is_well_formed(code: str) -> bool:
    return isinstance(code, str) and len(code) == config.ACCESS_CODE_LENGTH


def hash_access_code(code: str) -> str:
    """Hash an access code for storage using bcrypt."""
    if not is_well_formed(code):
        raise ValueError(f"Access code must be exactly {config.ACCESS_CODE_LENGTH} characters")
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(code.encode("utf-8"), salt).decode("utf-8")


def check_access_code(code: str, code_hash: str) -> bool:
    """Verify an access code against its hash."""
    if not is_well_formed(code) or not code_hash:
        return False
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False
