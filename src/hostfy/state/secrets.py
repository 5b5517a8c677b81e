import secrets
import string
from typing import Dict, Iterable

# No @, #, %, /, ?, & so generated values survive inside connection strings
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "_-."

SENSITIVE_FRAGMENTS = ("KEY", "SECRET", "PASSWORD", "TOKEN")

SENSITIVE_NAMES = frozenset(
    {
        "N8N_ENCRYPTION_KEY",
        "SECRET_KEY_BASE",
        "AUTHENTICATION_API_KEY",
        "MINIO_ROOT_USER",
        "MINIO_ROOT_PASSWORD",
    }
)


def generate_secret(length: int) -> str:
    """Return ``length`` hex characters of cryptographically secure randomness."""
    return secrets.token_hex(max(length, 2) // 2)


def generate_password(length: int = 24) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def is_sensitive_key(key: str) -> bool:
    if key in SENSITIVE_NAMES:
        return True
    upper = key.upper()
    return any(fragment in upper for fragment in SENSITIVE_FRAGMENTS)


def filter_sensitive(envs: Iterable[Dict[str, str]]) -> Dict[str, str]:
    """Collect sensitive keys from several env maps; later maps win on conflicts."""
    result: Dict[str, str] = {}
    for env in envs:
        for key, value in (env or {}).items():
            if is_sensitive_key(key):
                result[key] = value
    return result
