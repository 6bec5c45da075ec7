import json

from mss_widget.admission_store import AdmissionStore
from mss_widget.errors import StorageUnavailable
from mss_widget.models import EmbedEvent
from mss_widget.placeholder_service import PlaceholderService


def _intake(client, slug="mss-demo", **body):
	payload = {"studentId": 123, "help_level": 0, "help_surface": "none", "widget_variant": "Widget.html"}
	payload.update(body)
	return client.post(f"/api/widget/{slug}/submissions", json=payload)


def test_health(client):
	resp = client.get("/health")
	assert resp.status_code == 200
	body = resp.json()
	assert body["ok"] is True
	assert body["database"] == "ok"


def test_school_crud(client, school):
	assert school["slug"] == "mss-demo"
	assert client.post("/api/schools", json={"slug": "mss-demo", "name": "Again"}).status_code == 409
	assert client.post("/api/schools", json={"slug": "Bad Slug!", "name": "x"}).status_code == 422
	assert client.get("/api/schools/mss-demo").json()["id"] == school["id"]
	assert client.get("/api/schools/nope").status_code == 404


def test_intake_reuses_pending_submission(client, school):
	first = _intake(client)
	second = _intake(client)

	assert first.status_code == 200
	assert first.json()["reused"] is False
	assert second.json()["reused"] is True
	assert second.json()["submission_id"] == first.json()["submission_id"]

	record = client.get(f"/api/submissions/{first.json()['submission_id']}").json()
	assert record["status"] == "pending"
	assert record["school_id"] == school["id"]
	assert record["student_id"] == 123
	assert record["widget_variant"] == "Widget.html"


def test_intake_for_unknown_school(client):
	assert _intake(client, slug="ghost").status_code == 404


def test_intake_rejects_malformed_ids(client, school):
	assert _intake(client, studentId="abc").status_code == 422


def test_anonymous_and_identified_attempts_do_not_merge(client, school):
	anon = _intake(client, studentId=None)
	named = _intake(client)
	assert anon.json()["submission_id"] != named.json()["submission_id"]


def test_score_then_new_attempt(client, school):
	sid = _intake(client).json()["submission_id"]

	scored = client.put(f"/api/submissions/{sid}/score", json={"cefr": "B1", "toefl": 80, "transcript": "hello", "meta": {"vox": 1}})
	assert scored.status_code == 200
	assert scored.json()["status"] == "finalized"
	assert scored.json()["scores"]["cefr"] == "B1"
	assert scored.json()["finalized_at"] is not None

	# scoring the same submission twice is harmless
	assert client.put(f"/api/submissions/{sid}/score", json={"cefr": "C1"}).json()["scores"]["cefr"] == "B1"

	retry = _intake(client).json()
	assert retry["reused"] is False
	assert retry["submission_id"] != sid


def test_abandon_transitions(client, school):
	sid = _intake(client).json()["submission_id"]
	assert client.post(f"/api/submissions/{sid}/abandon").json()["status"] == "abandoned"
	assert client.put(f"/api/submissions/{sid}/score", json={"cefr": "B1"}).status_code == 409

	other = _intake(client, studentId=5).json()["submission_id"]
	client.put(f"/api/submissions/{other}/score", json={})
	resp = client.post(f"/api/submissions/{other}/abandon")
	assert resp.status_code == 409
	assert resp.json()["detail"] == "invalid_transition"


def test_unknown_submission(client):
	assert client.get("/api/submissions/404").status_code == 404
	assert client.put("/api/submissions/404/score", json={}).status_code == 404


def test_daily_limit(client):
	school = client.post("/api/schools", json={"slug": "tiny", "name": "Tiny", "daily_limit": 1}).json()

	status = client.get("/api/embed-check", params={"schoolId": school["id"]}).json()
	assert status["blocked"] is False
	assert status["remaining_today"] == 1

	assert _intake(client, slug="tiny").status_code == 200
	assert _intake(client, slug="tiny", studentId=2).status_code == 429

	status = client.get("/api/embed-check", params={"schoolId": school["id"]}).json()
	assert status["blocked"] is True
	assert status["reason"] == "limit_exceeded"
	assert status["used_today"] == 1


def test_embed_check_validation(client, school):
	assert client.get("/api/embed-check", params={"schoolId": "x"}).status_code == 400
	assert client.get("/api/embed-check", params={"schoolId": 0}).status_code == 400
	assert client.get("/api/embed-check", params={"schoolId": 999}).status_code == 404
	unlimited = client.get("/api/embed-check", params={"schoolId": school["id"]}).json()
	assert unlimited == {"ok": True, "blocked": False, "reason": None, "daily_limit": 0, "used_today": 0, "remaining_today": None}


class _DownStore(AdmissionStore):
	def try_insert(self, key, context):
		raise StorageUnavailable()


def test_storage_outage_returns_503(app, client, school):
	app.state.placeholder_service = PlaceholderService(_DownStore(app.state.session_factory))
	resp = _intake(client)
	assert resp.status_code == 503
	assert resp.headers["retry-after"] == "1"
	assert resp.json()["detail"] == "storage_unavailable"


def test_retry_of_pending_attempt_is_allowed_at_the_daily_limit(client):
	client.post("/api/schools", json={"slug": "tiny", "name": "Tiny", "daily_limit": 1})

	first = _intake(client, slug="tiny")
	retry = _intake(client, slug="tiny")
	assert retry.status_code == 200
	assert retry.json() == {"ok": True, "submission_id": first.json()["submission_id"], "reused": True}

	assert _intake(client, slug="tiny", studentId=2).status_code == 429
	assert _intake(client, slug="tiny").json()["reused"] is True


def test_caller_defined_fields_reach_the_payload(client, school):
	other = client.post("/api/schools", json={"slug": "other", "name": "Other"}).json()
	resp = _intake(client, attemptToken="tok-9", schoolId=other["id"], extra={"lms": "canvas"})
	assert resp.status_code == 200

	record = client.get(f"/api/submissions/{resp.json()['submission_id']}").json()
	assert record["school_id"] == school["id"]
	assert record["payload"]["attemptToken"] == "tok-9"
	assert record["payload"]["extra"] == {"lms": "canvas"}
	assert "schoolId" not in record["payload"]


def test_intake_checks_the_question_belongs_to_the_school(client, school):
	client.post("/api/schools", json={"slug": "other", "name": "Other"})
	mine = client.post("/api/admin/questions/mss-demo", json={"question": "Describe your town."}).json()
	theirs = client.post("/api/admin/questions/other", json={"question": "Favourite food?"}).json()

	ok = _intake(client, questionId=mine["id"])
	assert ok.status_code == 200
	assert client.get(f"/api/submissions/{ok.json()['submission_id']}").json()["question_id"] == mine["id"]

	assert _intake(client, questionId=theirs["id"]).json()["detail"] == "unknown_question"
	assert _intake(client, questionId=999).status_code == 422

	client.put(f"/api/admin/questions/mss-demo/{mine['id']}", json={"is_active": False})
	assert _intake(client, studentId=5, questionId=mine["id"]).status_code == 422


def test_bootstrap_returns_settings_and_public_questions(client, school):
	client.put("/api/admin/widget/mss-demo", json={"config": {"theme": "dark"}, "form": {"fields": ["email"]}})
	client.post("/api/admin/questions/mss-demo", json={"question": "Second", "position": 2})
	first = client.post("/api/admin/questions/mss-demo", json={"question": "First", "position": 1}).json()
	client.post("/api/admin/questions/mss-demo", json={"question": "Hidden", "is_public": False})

	body = client.get("/api/widget/mss-demo/bootstrap").json()
	assert body["school_id"] == school["id"]
	assert body["config"] == {"theme": "dark"}
	assert body["form"] == {"fields": ["email"]}
	assert [q["question"] for q in body["questions"]] == ["First", "Second"]
	assert body["questions"][0]["id"] == first["id"]

	assert client.get("/api/widget/ghost/bootstrap").status_code == 404


def test_bootstrap_without_settings(client, school):
	body = client.get("/api/widget/mss-demo/bootstrap").json()
	assert body["config"] == {}
	assert body["form"] == {}
	assert body["questions"] == []


def test_widget_settings_update_daily_limit(client, school):
	resp = client.put("/api/admin/widget/mss-demo", json={"daily_limit": 5})
	assert resp.json()["daily_limit"] == 5
	assert resp.json()["config"] == {}
	assert client.get("/api/admin/widget/mss-demo").json()["daily_limit"] == 5
	assert client.put("/api/admin/widget/mss-demo", json={"daily_limit": -1}).status_code == 422


def test_question_delete_is_soft_when_used(client, school):
	used = client.post("/api/admin/questions/mss-demo", json={"question": "Used"}).json()
	unused = client.post("/api/admin/questions/mss-demo", json={"question": "Unused"}).json()
	_intake(client, questionId=used["id"])

	assert client.delete(f"/api/admin/questions/mss-demo/{used['id']}").json()["mode"] == "soft"
	assert client.delete(f"/api/admin/questions/mss-demo/{unused['id']}").json()["mode"] == "hard"

	rows = client.get("/api/admin/questions/mss-demo").json()
	assert [(r["id"], r["is_active"]) for r in rows] == [(used["id"], False)]


def test_question_routes_are_school_scoped(client, school):
	client.post("/api/schools", json={"slug": "other", "name": "Other"})
	theirs = client.post("/api/admin/questions/other", json={"question": "Q"}).json()
	assert client.put(f"/api/admin/questions/mss-demo/{theirs['id']}", json={"question": "x"}).status_code == 404
	assert client.delete(f"/api/admin/questions/mss-demo/{theirs['id']}").status_code == 404


def test_embed_event_is_recorded(app, client, school):
	resp = client.post(
		"/api/embed-event",
		json={"schoolId": school["id"], "type": "blocked", "message": "limit reached", "detail": {"url": "https://x"}},
	)
	assert resp.status_code == 200
	assert resp.json()["ok"] is True

	with app.state.session_factory() as db:
		row = db.get(EmbedEvent, resp.json()["id"])
		assert row.school_id == school["id"]
		assert row.event_type == "blocked"
		assert json.loads(row.detail) == {"url": "https://x"}

	assert client.post("/api/embed-event", json={"type": "load_error"}).status_code == 200
	assert client.post("/api/embed-event", json={"schoolId": 999, "type": "x"}).status_code == 404
	assert client.post("/api/embed-event", json={"message": "no type"}).status_code == 422
