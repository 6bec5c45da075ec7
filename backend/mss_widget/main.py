import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session

from .admission_store import AdmissionStore
from .cleanup import sweep_forever
from .db import Base, make_engine, make_session_factory, ensure_schema
from .errors import PlaceholderError
from .gemini_client import GeminiClient
from .models import School
from .placeholder_service import PlaceholderService
from .settings import Settings, settings as default_settings
from .routers import health
from .routers import schools
from .routers import widget
from .routers import submissions
from .routers import reports
from .routers import admin
from .routers.deps import placeholder_error_handler

logger = logging.getLogger(__name__)


def _seed_school(db: Session, slug: str, name: str) -> None:
	if db.query(School).filter(School.slug == slug).first() is None:
		db.add(School(slug=slug, name=name))
		db.commit()
		logger.info("Seeded school %s", slug)


def create_app(config: Optional[Settings] = None) -> FastAPI:
	cfg = config or default_settings
	logging.basicConfig(level=cfg.log_level.upper())

	engine = make_engine(cfg.database_url)
	session_factory = make_session_factory(engine)
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema(engine)
	if cfg.seed_school_slug:
		with session_factory() as db:
			_seed_school(db, cfg.seed_school_slug, cfg.seed_school_name)

	app = FastAPI(title="MySpeakingScore Widget API")
	app.state.settings = cfg
	app.state.engine = engine
	app.state.session_factory = session_factory
	app.state.placeholder_service = PlaceholderService(AdmissionStore(session_factory))
	app.state.report_client_factory = lambda: GeminiClient(config=cfg)
	app.state.sweep_task = None

	app.include_router(health.router)
	app.include_router(schools.router)
	app.include_router(widget.router)
	app.include_router(submissions.router)
	app.include_router(admin.router)
	app.include_router(reports.router)
	app.add_exception_handler(PlaceholderError, placeholder_error_handler)

	@app.on_event("startup")
	async def startup_event():
		if cfg.placeholder_sweep_seconds > 0:
			app.state.sweep_task = asyncio.create_task(
				sweep_forever(
					app.state.placeholder_service.store,
					interval_seconds=cfg.placeholder_sweep_seconds,
					max_age_minutes=cfg.placeholder_stale_minutes,
				)
			)

	@app.on_event("shutdown")
	async def shutdown_event():
		task = app.state.sweep_task
		if task is not None:
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		engine.dispose()

	return app


app = create_app()
