"""
Imago Occurrences - FastAPI Application

Main entry point for the occurrence engine backend.

Lifecycle:
- Intake → OPEN
- Operator note + AI analysis → IN_ANALYSIS → AWAITING_CONFIRMATION (or back to OPEN)
- Finalization → FINALIZED with protocol number and PDF record
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .routers import intake_router, admin_router, auth_router, documents_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Imago Occurrences",
    description="""
    Imago Occurrences - Complaint/Incident Lifecycle Engine

    Tracks occurrences submitted by end users, routes them through an external
    AI analysis step, and finalizes them into numbered, PDF-documented records.

    ## Workflow
    1. **Intake**: reporter data → occurrence in `open`
    2. **Analysis**: operator note → `in_analysis` → `awaiting_confirmation` (failure reverts to `open`)
    3. **Finalization**: daily protocol number + PDF → `finalized`

    ## Key Principles
    - Status only moves along the workflow graph; `finalized` is terminal
    - Protocol numbers are unique and gap-free per day under concurrency
    - A failed analysis never leaves an occurrence stuck in `in_analysis`
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(intake_router)
app.include_router(admin_router)
app.include_router(documents_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Imago Occurrences",
        "version": "1.0.0",
        "description": "Occurrence lifecycle and protocol numbering engine",
        "docs": "/docs",
        "workflow": ["open", "in_analysis", "awaiting_confirmation", "finalized"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m imago.main
if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8001)
