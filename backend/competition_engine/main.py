import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from competition_engine.config import CORS_ORIGINS, LOG_LEVEL
from competition_engine.database import init_db
from competition_engine.routes import generation, matches, teams

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Competition Engine API"

app = FastAPI(title=APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(generation.router, prefix="/api", tags=["generation"])
app.include_router(matches.router, prefix="/api", tags=["matches"])
app.include_router(teams.router, prefix="/api", tags=["teams"])


@app.on_event("startup")
def on_startup():
    init_db()  # Use centralized init_db() which imports models and creates tables
    logger.info("%s started with %d routes", APP_NAME, len(app.routes))


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "status": "healthy"}
