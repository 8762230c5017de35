import base64
import hashlib
import hmac
import json
import os
import time

import config
from logger import log


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def ub64url(data: str) -> bytes:
    padding = "=" * ((4 - len(data) % 4) % 4)
    return base64.urlsafe_b64decode(data + padding)


def sign_token(payload: dict, exp_seconds: int = config.TOKEN_TTL_SECONDS, secret: str = None) -> str:
    """HMAC-SHA256 signed `<payload>.<signature>`, both URL-safe base64."""
    secret = secret or config.SECRET_KEY
    body = payload.copy()
    body["exp"] = int(time.time()) + exp_seconds
    raw = json.dumps(body, separators=(",", ":")).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha256).digest()
    log(f"Signed token for user_id={body.get('user_id')}", "INFO")
    return f"{b64url(raw)}.{b64url(sig)}"


def verify_token(token: str, secret: str = None):
    """Returns the payload dict, or None if the token is malformed, forged or expired."""
    secret = secret or config.SECRET_KEY
    try:
        raw_b64, sig_b64 = token.split(".")
        raw = ub64url(raw_b64)
        expected = hmac.new(secret.encode(), raw, hashlib.sha256).digest()
        if not hmac.compare_digest(expected, ub64url(sig_b64)):
            log("Token signature mismatch", "WARNING")
            return None
        body = json.loads(raw)
        if int(time.time()) > int(body.get("exp", 0)):
            log("Token expired", "WARNING")
            return None
        return body
    except (ValueError, TypeError) as e:
        log(f"Token verification failed: {e}", "ERROR")
        return None


def _b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


def hash_password(password: str) -> tuple[str, str]:
    """
    Returns (hash_b64, salt_b64) using PBKDF2-HMAC-SHA256 with config.PBKDF2_ITERATIONS.
    """
    if not isinstance(password, str):
        raise TypeError("password must be a string")
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, config.PBKDF2_ITERATIONS)
    return _b64e(dk), _b64e(salt)


def verify_password(password: str, stored_hash_b64: str, salt_b64: str) -> bool:
    if not stored_hash_b64 or not salt_b64:
        log("verify_password: account has no salted hash", "WARNING")
        return False
    try:
        salt = _b64d(salt_b64)
    except ValueError as e:
        log(f"verify_password: bad salt: {e}", "ERROR")
        return False
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, config.PBKDF2_ITERATIONS)
    result = hmac.compare_digest(_b64e(dk), stored_hash_b64)
    log(f"verify_password: comparison result: {result}", "SUCCESS" if result else "WARNING")
    return result
