# ==============================================================================
# PASSWORD HASHING
# ==============================================================================
# New hashes come from werkzeug (salted). Stored values starting with "hash_"
# come from backups of the browser release, which used a 32-bit string hash;
# those still verify and are upgraded on the next successful login.
# ==============================================================================

import hmac

from werkzeug.security import check_password_hash, generate_password_hash

LEGACY_PREFIX = 'hash_'

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def to_base36(value: int) -> str:
    """Lowercase base-36 representation of a non-negative integer."""
    if value < 0:
        raise ValueError('value must be non-negative')
    if value == 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def legacy_hash(password: str) -> str:
    """
    The browser release's hash: h = h * 31 + code unit, wrapped to a signed
    32-bit integer, rendered as "hash_" + base36(|h|).
    """
    encoded = password.encode('utf-16-le')
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return LEGACY_PREFIX + to_base36(abs(h))


def hash_password(password: str) -> str:
    """
    Hash a password for storage.

    Args:
        password: Plain text password

    Returns:
        Werkzeug hash string ("scrypt:...")
    """
    return generate_password_hash(password)


def verify_password(candidate: str, stored_hash: str) -> bool:
    """
    Check a candidate password against a stored hash.

    Args:
        candidate: Plain text password
        stored_hash: Werkzeug or legacy hash

    Returns:
        True if the password matches
    """
    if not isinstance(stored_hash, str) or not stored_hash or not isinstance(candidate, str):
        return False
    if stored_hash.startswith(LEGACY_PREFIX):
        return hmac.compare_digest(legacy_hash(candidate), stored_hash)
    try:
        return check_password_hash(stored_hash, candidate)
    except ValueError:
        # Unknown hash method
        return False


def needs_rehash(stored_hash: str) -> bool:
    return isinstance(stored_hash, str) and stored_hash.startswith(LEGACY_PREFIX)
