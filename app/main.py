"""FastAPI application setup for the trip safety service."""

from fastapi import FastAPI

from .api import router as api_router

app = FastAPI(title="Summit Safety")

# API routes
app.include_router(api_router, prefix="/v1")
