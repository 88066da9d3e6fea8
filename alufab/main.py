from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import logging

from .config import settings

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Import router after logging is configured
from .api_router import api_router
from .errors import CuttingError
from . import database

app = FastAPI(
    title="Aluminium Fabrication Cutting & Inventory API",
    description="Cutting plans for window profiles and FIFO batch inventory consumption",
)

# Global exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"❌ VALIDATION ERROR on {request.method} {request.url}: {exc}")
    logger.error(f"❌ VALIDATION DETAILS: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": f"Validation error: {exc.errors()}"}
    )

# Domain errors carry their own HTTP status and payload
@app.exception_handler(CuttingError)
async def cutting_error_handler(request: Request, exc: CuttingError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"⚠️ {exc.__class__.__name__} on {request.method} {request.url}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Set up CORS for the fabrication frontend
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# Add additional origins from environment variable
cors_origins.extend(settings.CORS_ORIGINS)

logger.info(f"CORS origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)

@app.on_event("startup")
async def startup_event():
    """
    Create missing tables on startup.
    Managed deployments run the Alembic migrations instead.
    """
    logger.info("Initializing database...")
    try:
        if database.engine is not None:
            from . import models
            models.Base.metadata.create_all(bind=database.engine)
            logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")

@app.get("/")
async def root():
    return {"message": "Aluminium Fabrication Cutting & Inventory API is Live"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
