"""
FastAPI application for the WheelFeed importer.

Provides REST endpoints for:
- Running a feed import in fetch-then-batch steps
- Polling, resuming and discarding unfinished runs
- Import history, category policy and broken image reports

Run with:
    cd backend
    source venv/bin/activate
    uvicorn wheelfeed.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .routes import imports, policy
from .services.catalog import init_schema
from .services.database import db_pool


# Tables are created on every fresh connection
db_pool.on_connect(init_schema)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes database connection on startup and closes it on shutdown.
    """
    # Startup
    try:
        db_pool.initialize()
        print("Database connection initialized")
    except Exception as e:
        print(f"Warning: Could not initialize database: {e}")
        print("Some endpoints may not work without database connection")

    yield

    # Shutdown
    db_pool.close()
    print("Database connection closed")


app = FastAPI(
    title="WheelFeed Importer API",
    description="Batched, resumable import of the vendor wheel feed",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(imports.router)
app.include_router(policy.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        Health status including database connectivity
    """
    db_status = "unknown"

    try:
        with db_pool.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return HealthResponse(
        status="ok",
        timestamp=datetime.utcnow(),
        database=db_status,
    )


@app.get("/", tags=["root"])
def root():
    """API information."""
    return {
        "message": "WheelFeed Importer API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/health",
    }
