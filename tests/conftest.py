import os

# Keep the module-level app off the working directory and without a sweep loop
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["PLACEHOLDER_SWEEP_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient

from mss_widget.admission_store import AdmissionStore
from mss_widget.db import Base, make_engine, make_session_factory
from mss_widget.keys import parse_context
from mss_widget.main import create_app
from mss_widget.models import School
from mss_widget.settings import Settings


@pytest.fixture
def database_url(tmp_path):
	return f"sqlite:///{tmp_path / 'widget.db'}"


@pytest.fixture
def session_factory(database_url):
	engine = make_engine(database_url)
	Base.metadata.create_all(bind=engine)
	yield make_session_factory(engine)
	engine.dispose()


@pytest.fixture
def school_id(session_factory):
	with session_factory() as db:
		row = School(slug="mss-demo", name="MSS Demo")
		db.add(row)
		db.commit()
		return row.id


@pytest.fixture
def store(session_factory):
	return AdmissionStore(session_factory)


@pytest.fixture
def make_context(school_id):
	def _make(**overrides):
		data = {"tenant_id": school_id, "subject_id": 123, "task_id": 7}
		data.update(overrides)
		return parse_context(data)
	return _make


@pytest.fixture
def app(database_url):
	return create_app(Settings(DATABASE_URL=database_url, PLACEHOLDER_SWEEP_SECONDS=0, GEMINI_API_KEY=None))


@pytest.fixture
def client(app):
	with TestClient(app) as c:
		yield c


@pytest.fixture
def school(client):
	resp = client.post("/api/schools", json={"slug": "mss-demo", "name": "MSS Demo"})
	assert resp.status_code == 201
	return resp.json()
