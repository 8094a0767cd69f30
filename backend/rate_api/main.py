"""
Rate engine application entry point
Rate matrix, grid editing, pricing primitives and rate audit
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rate_api.config import settings
from rate_api.database import init_db
from rate_api.routers import primitives, rate_audits, rate_grid, rate_matrix


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Rate resolution and bulk-editing engine",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(rate_matrix.router)
app.include_router(rate_grid.router)
for router in primitives.routers:
    app.include_router(router)
app.include_router(rate_audits.router)


@app.get("/")
def root():
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/health")
def health_check():
    """Health check"""
    return {"status": "healthy"}
