import logging
import os
from pathlib import Path

import auth
import crud
import database
import schemas
from dotenv import load_dotenv
from exceptions import AuthError, ClientValidationError, TrackingError
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from ingestion import IngestionService
from retention import RetentionJob
from starlette.concurrency import run_in_threadpool

load_dotenv(Path(__file__).parent.parent / ".env")

ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
TRACK_ACTION = "atf_lt_track_links"
# Each link posts two fields; this admits batches of up to 10k links
MAX_FORM_FIELDS = 20_010

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("atf_tracker")

# --- DB tables ---
database.create_tables()

app = FastAPI(
    title="Above The Fold Link Tracker",
    description="Collects the links visible without scrolling on first render and keeps a rolling 7-day window.",
    version="0.1.0",
)

# --- CORS (tracked pages post from their own origin) ---
origins = ["*"] if ENVIRONMENT == "dev" else [
    os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"),
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "data": {"message": exc.message}},
    )

# Health check (useful for uptime monitors & load balancers)
@app.get("/health", include_in_schema=False)
def health():
    return {"status": "ok", "env": ENVIRONMENT}

# Settings a scanner needs before it can post a batch
@app.get("/tracker/config", response_model=schemas.TrackerConfig)
def tracker_config(request: Request):
    base = os.getenv("PUBLIC_BASE_URL") or str(request.base_url).rstrip("/")
    return {
        "ajax_url": f"{base}/track",
        "action": TRACK_ACTION,
        "nonce": auth.create_nonce(TRACK_ACTION),
    }

# ---------- API ----------
@app.post("/track", response_model=schemas.TrackingEnvelope)
async def track_links(request: Request, db=Depends(database.get_db)):
    form = await request.form(max_fields=MAX_FORM_FIELDS)

    action = str(form.get("action") or "").strip()
    if action != TRACK_ACTION:
        raise ClientValidationError(
            f"Invalid or missing action parameter. Expected: {TRACK_ACTION}; Received: {action or 'None'}"
        )
    if not auth.verify_nonce(form.get("nonce"), TRACK_ACTION):
        raise AuthError("Nonce verification failed. The security token is invalid or has expired.")

    service = IngestionService(db)
    result = await run_in_threadpool(
        service.ingest,
        form.get("screen_width"),
        form.get("screen_height"),
        schemas.parse_link_fields(form),
        request.headers.get("user-agent"),
    )
    return {"success": True, "data": {"message": result.message, "visit_id": result.visit_id}}

@app.post("/login", response_model=schemas.Token)
def login(response: Response, form_data: OAuth2PasswordRequestForm = Depends()):
    if not auth.authenticate_user(form_data.username, form_data.password):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    token = auth.create_access_token({"sub": form_data.username})
    # Only set secure cookie if HTTPS is configured
    is_https = os.getenv("PUBLIC_BASE_URL", "").startswith("https://")
    response.set_cookie(
        key="access_token", value=token,
        httponly=True, samesite="lax", secure=is_https, path="/", max_age=3600
    )
    return {"access_token": token, "token_type": "bearer"}

@app.get("/report", response_model=schemas.PaginatedReport)
def report(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db=Depends(database.get_db),
    user=Depends(auth.get_current_user),
):
    items = [row._asdict() for row in crud.get_tracked_links(db, skip=skip, limit=limit)]
    total = crud.count_tracked_links(db)
    return {"items": items, "total": total, "skip": skip, "limit": limit}

@app.post("/maintenance/cleanup", response_model=schemas.CleanupOut)
def cleanup(db=Depends(database.get_db), user=Depends(auth.get_current_user)):
    # Both phases run on the request's session; closing it between phases is harmless
    result = RetentionJob(lambda: db).run()
    logger.info("Cleanup triggered by=%s: %s", user, result)
    return {"orphans_deleted": result.orphans_deleted, "visits_deleted": result.visits_deleted}
