"""
Shared Ledger Backend API

A FastAPI backend for shared expense ledgers: identity aliasing, bulk import,
cascading cleanup and split settlement.
This module sets up the app and mounts routers - all endpoint logic is in routers/.
"""

import os
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import models
from database import engine
from utils.errors import AliasIntegrityError

# Import routers
from routers import accounts, aliases, cleanup, expenses, friends, groups, imports


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="Shared Ledger API",
    description="API for shared expense ledgers across linked accounts",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this to frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AliasIntegrityError)
async def alias_integrity_error_handler(request: Request, exc: AliasIntegrityError):
    # The transaction has already been rolled back by the time this runs
    logger.error(f"Alias integrity error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Alias integrity error"})


# Include routers
app.include_router(accounts.router)
app.include_router(friends.router)
app.include_router(aliases.router)
app.include_router(groups.router)
app.include_router(expenses.router)
app.include_router(imports.router)
app.include_router(cleanup.router)
