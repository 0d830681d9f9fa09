import logging

from fastapi import FastAPI
from contextlib import asynccontextmanager
from revenue_rollup.db.init_db import create_database
from revenue_rollup.db.base import Base
from revenue_rollup.db.session import engine
from revenue_rollup.core.config import settings
from revenue_rollup.api.v1.router import api_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Ensure DB exists and create the bucket table (the ledger table is owned upstream)
    create_database()
    Base.metadata.create_all(bind=engine)
    logger.info("Revenue analytics store ready.")
    yield


from fastapi.middleware.cors import CORSMiddleware

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
def read_root():
    return {"Hello": "Revenue Rollup"}
