import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./casino.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

SECRET_KEY = os.getenv("SECRET_KEY", "your_super_secret_key_change_in_production_2024")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Max wait for the per-user exclusive scope before a round gives up
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "10"))

DEFAULT_CLIENT_SEED = os.getenv("DEFAULT_CLIENT_SEED", "arguz")
CLIENT_SEED_MAX_LENGTH = 100

ROUNDS_PAGE_LIMIT = int(os.getenv("ROUNDS_PAGE_LIMIT", "100"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
