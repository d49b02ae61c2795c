"""
OTP Hashing Utilities
=====================
Code generation, salted hashing and constant-time verification.
"""

import hashlib
import hmac
import secrets


def generate_code(length: int = 6) -> str:
    """
    Generate a cryptographically secure numeric code.

    The value is drawn uniformly from ``[10**(length-1), 10**length - 1]``
    using the ``secrets`` module, so it cannot be seeded by the caller.

    Args:
        length: Number of digits

    Returns:
        Decimal string of exactly ``length`` digits
    """
    if length < 1:
        raise ValueError(f"Code length must be at least 1, got {length}")

    low = 10 ** (length - 1)
    high = 10 ** length - 1
    code = low + secrets.randbelow(high - low + 1)
    return str(code).zfill(length)


def generate_salt() -> str:
    """Generate a random salt for code hashing."""
    return secrets.token_hex(16)


def hash_code(code: str, salt: str) -> str:
    """
    Hash a code with salt using SHA-256.

    Args:
        code: Plain code
        salt: Per-record salt

    Returns:
        Hex digest
    """
    return hashlib.sha256(f"{salt}:{code}".encode()).hexdigest()


def verify_code_hash(code: str, salt: str, stored_hash: str) -> bool:
    """
    Verify a code against its stored hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    computed_hash = hash_code(code, salt)
    return hmac.compare_digest(computed_hash, stored_hash)
