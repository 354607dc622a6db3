import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import LOG_LEVEL
from .db import init_db
from .errors import register_exception_handlers
from .routers import landlord_contracts, tenant_contracts

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Leasehub contract API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(landlord_contracts.router, prefix="/api/landlord", tags=["landlord-contracts"])
app.include_router(tenant_contracts.router, prefix="/api/contracts", tags=["tenant-contracts"])

@app.get("/")
def root():
    return {"ok": True, "service": "leasehub-api"}
