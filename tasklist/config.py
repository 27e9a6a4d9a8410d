from pathlib import Path
import os

from dotenv import load_dotenv

# Load environment variables from repo root and package/.env (if present).
REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(REPO_ROOT / ".env")
load_dotenv(Path(__file__).resolve().parent / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# REST service database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tasklist_api.db")

# Local store (record container name and schema version are fixed per store)
STORE_NAME = os.getenv("STORE_NAME", "TodoApp")
STORE_VERSION = int(os.getenv("STORE_VERSION", "1"))
STORE_URL = os.getenv("STORE_URL", f"sqlite:///./{STORE_NAME}.db")
LEGACY_SNAPSHOT_PATH = Path(os.getenv("LEGACY_SNAPSHOT_PATH", "./todos.json"))

# Controller / presentation timing
NOTIFICATION_TTL_SECONDS = float(os.getenv("NOTIFICATION_TTL_SECONDS", "5"))
REMOVE_TRANSITION_SECONDS = float(os.getenv("REMOVE_TRANSITION_SECONDS", "0.3"))

# Demo auth gate
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
PENDING_TOKEN_EXPIRE_MINUTES = int(os.getenv("PENDING_TOKEN_EXPIRE_MINUTES", "5"))
DEMO_EMAIL = os.getenv("DEMO_EMAIL", "admin@todo.com")
DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "password")
TWO_FACTOR_SECRET = os.getenv("TWO_FACTOR_SECRET", "TODOAPP-DEMO-SECRET")

_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
CORS_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]
