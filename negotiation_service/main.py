# negotiation_service/main.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from negotiation_service.api.v1.api import api_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Negotiation service starting up...")
    yield
    logger.info("Negotiation service shutting down...")


app = FastAPI(
    title="Proposal Negotiation Service",
    version="1.0.0",
    description="""
        Multi-round negotiation on submitted proposals.

        ## Features

        * **Versioned proposals**: every updated offer is an immutable version
        * **Negotiation rounds**: request, respond, resolve, cancel
        * **Bulk requests**: one reduction ask sent to many proposals
        * **History**: merged timeline and compact version steps

        ## Authentication

        Endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Internal endpoints use the `X-Internal-Api-Key` header instead.
        """,
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Negotiation Service is running"}
