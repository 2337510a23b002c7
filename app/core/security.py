import secrets
from cryptography.fernet import Fernet, InvalidToken
from passlib.hash import argon2
from app.core.exceptions import ConfigurationError

# Tenant dashboard keys look like wk_live_<random>; the prefix is stored for lookup
API_KEY_PREFIX = "wk_live_"
API_KEY_LOOKUP_LENGTH = 16


def hash_api_key(api_key: str) -> str:
    """
    Hash API key using Argon2 (secure, slow, salted).
    """
    return argon2.hash(api_key)

def verify_api_key(api_key: str, hashed: str) -> bool:
    """
    Verify API key against Argon2 hash.
    Returns False if hash is malformed.
    """
    try:
        return argon2.verify(api_key, hashed)
    except (ValueError, TypeError):
        return False

def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)

def api_key_lookup_prefix(api_key: str) -> str:
    return api_key[:API_KEY_LOOKUP_LENGTH]


def _cipher(key: str) -> Fernet:
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"ENCRYPTION_KEY is not a valid Fernet key: {e}")

def encrypt_credential(plain: str, key: str) -> str:
    """
    Encrypt a provider credential before it is written to the database.
    """
    return _cipher(key).encrypt(plain.encode("utf-8")).decode("ascii")

def decrypt_credential(token: str, key: str) -> str:
    """
    Decrypt a provider credential read from the database.
    """
    try:
        return _cipher(key).decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        raise ConfigurationError("Stored credential cannot be decrypted with the current ENCRYPTION_KEY")

def mask_api_key(api_key: str | None) -> str | None:
    """
    Show only the first and last four characters of a credential.
    """
    if not api_key:
        return None
    if len(api_key) <= 8:
        return "********"
    visible = 4
    return api_key[:visible] + "*" * (len(api_key) - visible * 2) + api_key[-visible:]
