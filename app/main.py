"""
Instructor Inbox - Main FastAPI Application
"""
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.core.feature_gates import FeatureGates, get_feature_gates
from app.db.database import engine, Base, get_db
from app.domain.services.health_service import STATUS_UNAVAILABLE, check_readiness
from app.domain.services.ai.provider_factory import close_ai_client

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {
        "name": "Bookings",
        "description": "מחזור חיי הזמנה: יצירה, שליחה, אישור, דחייה, שינוי וביטול.",
    },
    {"name": "Conversations", "description": "מצב AI בשיחה וטיוטות תשובה לבדיקה אנושית."},
    {"name": "Inbound", "description": "קליטת הודעות לקוח מהגשר (פנימי)."},
    {"name": "Evidence", "description": "קריאת לוג הראיות והזמנות לפי 'מאז' (פנימי)."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "תיבת הודעות למדריכים: קליטת הודעות לקוח, סיווג, טיוטות תשובה "
        "לבדיקה אנושית וניהול מחזור חיי הזמנות."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Internal-API-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await close_ai_client()
    # סגירת חיבורי מסד הנתונים למניעת connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="בדיקה קלה שהתהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """Liveness probe: התהליך חי ומגיב."""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "בודק את מסד הנתונים ואת מצב ה-circuit breaker של שירות ה-AI. "
        "503 רק כשמסד הנתונים לא זמין; AI לא זמין מדווח כ-degraded."
    ),
    tags=["Health"],
)
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    gates: FeatureGates = Depends(get_feature_gates),
) -> JSONResponse:
    result = await check_readiness(db, gates)
    status_code = 503 if result["status"] == STATUS_UNAVAILABLE else 200
    return JSONResponse(content=result, status_code=status_code)
