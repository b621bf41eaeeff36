from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import fires, health, incidents
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logging import setup_logging

# Setup logging
logger = setup_logging()


# =============================================================================
# OpenAPI Tags Metadata
# =============================================================================
tags_metadata = [
    {
        "name": "incidents",
        "description": "**Fire Incidents** - Clusters of nearby satellite detections believed to be the same fire, with centroid, bounding box and FRP statistics.",
    },
    {
        "name": "fires",
        "description": "**Fire Detections** - Individual NASA FIRMS (VIIRS) fire pixels filtered by recency, quality and proximity.",
    },
    {
        "name": "health",
        "description": "**Health** - Database and Redis availability.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(
        "api_starting",
        project=settings.PROJECT_NAME,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        debug=settings.DEBUG,
    )

    yield

    logger.info("api_shutting_down")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## FirePing API

Read-only access to wildfire incidents clustered from NASA FIRMS satellite detections.

*Data source: NASA FIRMS (VIIRS S-NPP, NOAA-20, NOAA-21 near-real-time)*
    """,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
)

# Register global exception handlers
register_exception_handlers(app)

app.include_router(
    incidents.router, prefix=f"{settings.API_V1_PREFIX}/incidents", tags=["incidents"]
)

app.include_router(
    fires.router, prefix=f"{settings.API_V1_PREFIX}/fires", tags=["fires"]
)

# Health checks - detailed service status
app.include_router(
    health.router, prefix=f"{settings.API_V1_PREFIX}/health", tags=["health"]
)


@app.get(
    "/health",
    summary="Health check",
    description="Returns service health metadata for monitoring and uptime checks.",
)
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", summary="API root")
async def root():
    """Root endpoint with API info"""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health",
    }
