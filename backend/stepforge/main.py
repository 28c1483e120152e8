from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from stepforge.api import fixtures, projects, test_cases
from stepforge.api.dependencies import register_exception_handlers
from stepforge.logging_config import logger
from stepforge.config import config, settings
from stepforge.models import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.APP_NAME} started (generated root: {settings.GENERATED_ROOT})")
    yield

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(projects.router)
app.include_router(test_cases.router)
app.include_router(fixtures.router)


@app.get("/health")
def health():
    return {"status": "ok", "app": config.get("app", "NAME")}
