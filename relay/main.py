import logging
import os
import secrets
import uuid
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from relay import config, messages, models
from relay.database import SessionLocal, engine
from relay.service import build_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("docrelay")

# Create tables
models.Base.metadata.create_all(bind=engine)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="docrelay")
Instrumentator().instrument(app).expose(app)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.relay = build_service(SessionLocal)


class Purchase(BaseModel):
    checks: int = Field(gt=0)
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    payment_method: str = "telegram_stars"


class SubscriptionGrant(BaseModel):
    tier: str
    days: int = Field(gt=0)


def _relay(request: Request):
    return request.app.state.relay


def require_admin(x_admin_token: Optional[str] = Header(None)):
    if not x_admin_token:
        raise HTTPException(status_code=401, detail="Admin token required")
    # No configured token means the operator endpoints are closed
    if not config.ADMIN_TOKEN or not secrets.compare_digest(x_admin_token, config.ADMIN_TOKEN):
        raise HTTPException(status_code=403, detail="Invalid admin token")


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.post("/jobs")
@limiter.limit("10/minute")
async def create_job(
    request: Request,
    user_id: int = Form(...),
    username: Optional[str] = Form(None),
    file: UploadFile = File(...),
):
    relay = _relay(request)
    relay.ledger.get_or_create(user_id, username=username)
    relay.ledger.touch(user_id)

    # Refuse before storing anything; the runner checks again at admission
    if not relay.ledger.check_access(user_id).allowed:
        return {"status": "failed", "error": messages.NO_ACCESS}

    os.makedirs(config.INTAKE_DIR, exist_ok=True)
    file_name = os.path.basename(file.filename or "") or "document"
    path = os.path.join(config.INTAKE_DIR, f"{uuid.uuid4().hex}_{file_name}")
    size = 0
    with open(path, "wb") as out_file:
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            size += len(chunk)
            out_file.write(chunk)

    position = relay.submit_job(user_id, path, size, file_name=file_name)
    waiting = relay.queue.depth(user_id)
    if waiting:
        # Still queued behind this user's running job
        await relay.runner.notify_user(user_id, messages.QUEUED.format(position=waiting))
    return {"status": "queued", "position": position}


@app.get("/users/{user_id}")
async def get_profile(request: Request, user_id: int):
    profile = _relay(request).ledger.profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


@app.post("/users/{user_id}/credits", dependencies=[Depends(require_admin)])
@limiter.limit("30/minute")
async def add_credits(request: Request, user_id: int, purchase: Purchase):
    ledger = _relay(request).ledger
    ledger.get_or_create(user_id)
    txn_id = ledger.record_purchase(
        user_id, purchase.checks, purchase.amount, purchase.currency, purchase.payment_method
    )
    return {"transaction_id": txn_id, **ledger.profile(user_id)}


@app.post("/users/{user_id}/subscription", dependencies=[Depends(require_admin)])
@limiter.limit("30/minute")
async def grant_subscription(request: Request, user_id: int, grant: SubscriptionGrant):
    ledger = _relay(request).ledger
    ledger.get_or_create(user_id)
    try:
        ledger.add_subscription(user_id, grant.tier, grant.days)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ledger.profile(user_id)


@app.get("/users/{user_id}/history")
async def get_history(request: Request, user_id: int):
    return _relay(request).outcomes.by_user(user_id)


@app.get("/users/{user_id}/transactions", dependencies=[Depends(require_admin)])
async def get_user_transactions(request: Request, user_id: int):
    return _relay(request).ledger.transactions(user_id=user_id)


@app.get("/transactions", dependencies=[Depends(require_admin)])
async def get_transactions(request: Request, limit: int = 100):
    return _relay(request).ledger.transactions(limit=limit)


@app.get("/stats", dependencies=[Depends(require_admin)])
async def get_stats(request: Request):
    relay = _relay(request)
    return {
        "users": relay.ledger.stats(),
        "scheduler": relay.scheduler.snapshot(),
        "recent": relay.outcomes.recent(limit=20),
    }
