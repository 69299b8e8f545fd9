"""
Koperasi Dashboard — student cooperative membership & savings
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment before route modules read their settings
load_dotenv()

from core.gateway import MemoryBackend, MemoryGateway, SupabaseGateway  # noqa: E402
from core.state import JsonFileStore, SessionStore  # noqa: E402
from routes.analyze import router as analyze_router  # noqa: E402
from routes.auth import router as auth_router, snapshot_router  # noqa: E402
from routes.classes import router as classes_router  # noqa: E402
from routes.preferences import router as preferences_router  # noqa: E402
from routes.reports import ORGANIZATION_NAME, SESSION_LABEL, router as reports_router  # noqa: E402
from routes.students import router as students_router  # noqa: E402
from routes.upload import router as upload_router  # noqa: E402

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
DATA_BACKEND = os.getenv("DATA_BACKEND", "supabase" if SUPABASE_URL else "memory").strip().lower()
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "20"))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@koperasi.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
PREFERENCES_PATH = os.getenv("PREFERENCES_PATH", "preferences.json")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "3600"))


def build_gateway():
    """Hosted store when configured, otherwise the in-process demo store."""
    if DATA_BACKEND == "supabase":
        logger.info("Using Supabase backend at %s", SUPABASE_URL)
        return SupabaseGateway(SUPABASE_URL, SUPABASE_ANON_KEY, timeout=GATEWAY_TIMEOUT_SECONDS)
    if DATA_BACKEND != "memory":
        raise ValueError(f"Unknown DATA_BACKEND '{DATA_BACKEND}'. Use 'supabase' or 'memory'.")
    logger.warning("Using in-memory backend; records are lost on restart.")
    return MemoryGateway(MemoryBackend(users={ADMIN_EMAIL.lower(): ADMIN_PASSWORD}))


app = FastAPI(
    title="Koperasi Dashboard API",
    description=(
        "Student cooperative membership and savings — records, statistics, "
        "spreadsheet import and PDF / Excel reports."
    ),
    version="1.0.0",
)

app.state.gateway = build_gateway()
app.state.sessions = SessionStore(ttl_seconds=SESSION_TTL_SECONDS)
app.state.preferences = JsonFileStore(PREFERENCES_PATH)

# CORS for the browser client
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(snapshot_router, prefix="/api/snapshot", tags=["Auth"])
app.include_router(students_router, prefix="/api/students", tags=["Students"])
app.include_router(classes_router, prefix="/api/classes", tags=["Classes"])
app.include_router(upload_router, prefix="/api/upload", tags=["Upload"])
app.include_router(analyze_router, prefix="/api/analyze", tags=["Analytics"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
app.include_router(preferences_router, prefix="/api/preferences", tags=["Preferences"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "organization_name": ORGANIZATION_NAME,
        "backend": DATA_BACKEND,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "organization_name": ORGANIZATION_NAME,
        "session_label": SESSION_LABEL,
        "backend": DATA_BACKEND,
    }
