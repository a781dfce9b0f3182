import os

from dotenv import load_dotenv

load_dotenv()

# ----------------------------------------------------------------------------
# App
# ----------------------------------------------------------------------------
APP_ENV = os.getenv("APP_ENV", "development")
APP_VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
API_PREFIX = os.getenv("API_PREFIX", "/api/v1")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# ----------------------------------------------------------------------------
# Database
# ----------------------------------------------------------------------------
# Prefer PostgreSQL if provided, otherwise fall back to SQLite (so server always boots)
_env_db = os.getenv("DATABASE_URL", "").strip()
if _env_db:
    DATABASE_URL = _env_db
else:
    DATABASE_URL = "sqlite+aiosqlite:///./wisecalk.db"

# ----------------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------------
AUTH0_DOMAIN = os.getenv("AUTH0_DOMAIN", "wisecalk.us.auth0.com")
AUTH0_AUDIENCE = os.getenv("AUTH0_AUDIENCE", "https://api.wisecalk.com")
AUTH0_ISSUER = f"https://{AUTH0_DOMAIN}/"
AUTH0_ROLES_CLAIM = os.getenv("AUTH0_ROLES_CLAIM", "https://api.wisecalk.com/roles")
JWKS_URI = f"https://{AUTH0_DOMAIN}/.well-known/jwks.json"
JWKS_CACHE_TTL_SECONDS = int(os.getenv("JWKS_CACHE_TTL_SECONDS", "600"))
JWKS_REQUESTS_PER_MINUTE = int(os.getenv("JWKS_REQUESTS_PER_MINUTE", "5"))
ACCESS_TOKEN_ALGORITHM = "RS256"

JWT_SECRET = os.getenv("JWT_SECRET", "super-secret-key-change-me")
API_KEY_ALGORITHM = "HS256"
API_KEY_EXPIRE_DAYS = int(os.getenv("API_KEY_EXPIRE_DAYS", "365"))

PLACEHOLDER_EMAIL_DOMAIN = os.getenv("PLACEHOLDER_EMAIL_DOMAIN", "wisecalk.com")
