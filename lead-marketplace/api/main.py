"""
Lead Marketplace API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from config import configure_logging

configure_logging()

# Create FastAPI application
app = FastAPI(
    title="Lead Marketplace API",
    description="REST API for claiming homeowner leads with credits and quoting on them",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS - Allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "lead-marketplace-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Lead Marketplace API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import admin, credits, leads, quotes

app.include_router(credits.router, prefix="/api/v1", tags=["Credits"])
app.include_router(leads.router, prefix="/api/v1", tags=["Leads"])
app.include_router(quotes.router, prefix="/api/v1", tags=["Quotes"])
app.include_router(admin.router, prefix="/api/v1", tags=["Admin"])
