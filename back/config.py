import os
import secrets

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return (os.environ.get(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


BASE_DIR = os.path.dirname(os.path.abspath(__file__))

HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "3002"))
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "http://localhost:5173")

# Signs the bearer tokens handed out at login. Without one every restart logs everybody out.
SECRET_KEY = os.environ.get("SECRET_KEY") or ""
SECRET_KEY_GENERATED = not SECRET_KEY
if SECRET_KEY_GENERATED:
    SECRET_KEY = secrets.token_hex(32)
TOKEN_TTL_SECONDS = 60 * 60 * 24 * 7
PBKDF2_ITERATIONS = int(os.environ.get("PBKDF2_ITERATIONS", "200000"))

DATA_DIR = os.environ.get("DATA_DIR") or os.path.join(BASE_DIR, "data")
DATABASE = os.environ.get("DATABASE") or os.path.join(DATA_DIR, "walang-basagan.db")
USE_JSON_DB = _flag("USE_JSON_DB")
PRODUCTS_SEED_FILE = os.environ.get("PRODUCTS_SEED_FILE") or os.path.join(DATA_DIR, "products.seed.json")

UPLOAD_DIR = os.environ.get("UPLOAD_DIR") or os.path.join(BASE_DIR, "uploads")
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "5"))
ALLOWED_EXT = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

# The SPA identifies the caller with a plain X-User-Id header. Turn off once it sends bearer tokens.
TRUST_USER_ID_HEADER = _flag("TRUST_USER_ID_HEADER", "1")
ALLOW_STAFF_SIGNUP = _flag("ALLOW_STAFF_SIGNUP")

LOG_FILE = os.environ.get("LOG_FILE", "server.log")
