"""
FastAPI application for the finance report pipeline.

This module sets up the FastAPI app with CORS middleware and includes
all route modules.
"""

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from finance_ingest.api.routes import finance

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# Create FastAPI app
app = FastAPI(
    title="Finance Report API",
    description="Fetch, normalize and aggregate monthly finance reports",
    version="1.0.0",
)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("FINANCE_CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

# Include route modules
app.include_router(finance.router, prefix="/api", tags=["finance"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
