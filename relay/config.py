import os

from dotenv import load_dotenv

from workers.utils import get_secret

load_dotenv()

# Build DB URL
POSTGRES_HOST = os.environ.get("POSTGRES_HOST")
if os.environ.get("DATABASE_URL"):
    DATABASE_URL = os.environ["DATABASE_URL"]
elif POSTGRES_HOST:
    POSTGRES_USER = get_secret("postgres_user", "postgres")
    POSTGRES_PASSWORD = get_secret("postgres_password", "password")
    POSTGRES_DB = os.environ.get("POSTGRES_DB", "docrelay")
    POSTGRES_PORT = os.environ.get("POSTGRES_PORT", "5432")
    DATABASE_URL = f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
else:
    DATABASE_URL = "sqlite:///./docrelay.db"

# Scheduling
MAX_CONCURRENT_JOBS = int(os.environ.get("MAX_CONCURRENT_JOBS", "2"))
PROCESSING_TIMEOUT = float(os.environ.get("PROCESSING_TIMEOUT", "180"))

# Storage: intake files land in DATA_DIR/intake, jobs run in WORK_DIR
DATA_DIR = os.environ.get("DATA_DIR", "/data")
INTAKE_DIR = os.path.join(DATA_DIR, "intake")
WORK_DIR = os.environ.get("WORK_DIR", os.path.join(DATA_DIR, "work"))

# Quota
FREE_CHECKS_ON_SIGNUP = int(os.environ.get("FREE_CHECKS_ON_SIGNUP", "1"))

# Processing backend: "local" runs the worker in-process, "celery" sends a task
PROCESSOR_BACKEND = os.environ.get("PROCESSOR_BACKEND", "local")
CELERY_POLL_INTERVAL = float(os.environ.get("CELERY_POLL_INTERVAL", "1.0"))

TELEGRAM_BOT_TOKEN = get_secret("telegram_bot_token")

# Operator endpoints (credits, subscriptions, stats) require this in X-Admin-Token
ADMIN_TOKEN = get_secret("admin_token")

# Comma separated; empty means no cross-origin access
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()]
