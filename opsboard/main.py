import logging

from fastapi import FastAPI
from opsboard.core.config import settings
from opsboard.core.database import engine, Base
from opsboard.core.errors import register_error_handlers
from opsboard.models import user, project, task, review  # noqa: F401 (tables)
from opsboard.routers import health, users, projects, tasks, task_ledger, changes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Init DB
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Opsboard Task Store API",
    version="0.4.0"
)

register_error_handlers(app)

# Routes
app.include_router(health.router, prefix="/health")
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(task_ledger.router)
app.include_router(changes.router)
