"""
Score log & health API tests.

    GET /api/v1/score-logs
    GET /api/v1/score-logs/users/<id>/summary
    GET /api/v1/health
"""

from datetime import datetime, timedelta, timezone

import pytest

from fms.models import db
from fms.models.score_log import ScoreLog

BASE = "/api/v1/score-logs"

DAY0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def _log(user, project_id=None, task_index=0, day=1, on_time=True, score=1.0, impacted=False):
    """Insert a ScoreLog row directly (the consumer is covered elsewhere)."""
    log = ScoreLog(
        project_id=project_id,
        task_index=task_index,
        user_id=user.id,
        entity_title=f"Project - Step {task_index + 1}",
        anchor_date=DAY0,
        planned_date=DAY0 + timedelta(days=2),
        completed_date=DAY0 + timedelta(days=day),
        planned_days=2,
        actual_days=max(day, 1),
        score=score,
        score_percentage=round(score * 100, 1),
        was_on_time=on_time,
        score_impacted=impacted,
        impact_reason="objection with score impact" if impacted else None,
    )
    db.session.add(log)
    db.session.commit()
    return log


class TestListScoreLogs:
    def test_newest_first(self, client, worker):
        _log(worker, task_index=0, day=1)
        _log(worker, task_index=1, day=5, on_time=False, score=0.4)
        res = client.get(BASE)
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 2
        assert [i["task_index"] for i in data["items"]] == [1, 0]
        assert data["pages"] == 1

    def test_filter_by_user(self, client, worker, make_user):
        other = make_user("other")
        _log(worker)
        _log(other, task_index=1)
        data = client.get(f"{BASE}?user_id={other.id}").get_json()
        assert data["total"] == 1
        assert data["items"][0]["user_id"] == other.id

    def test_date_range(self, client, worker):
        _log(worker, task_index=0, day=1)
        _log(worker, task_index=1, day=10)
        data = client.get(f"{BASE}?date_from=2024-03-10&date_to=2024-03-31").get_json()
        assert [i["task_index"] for i in data["items"]] == [1]

    def test_bad_date(self, client):
        res = client.get(f"{BASE}?date_from=yesterday")
        assert res.status_code == 400

    def test_pagination(self, client, worker):
        for idx in range(5):
            _log(worker, task_index=idx, day=idx + 1)
        data = client.get(f"{BASE}?page=2&per_page=2").get_json()
        assert data["total"] == 5
        assert data["pages"] == 3
        assert [i["task_index"] for i in data["items"]] == [2, 1]


class TestUserSummary:
    def test_summary(self, client, worker):
        _log(worker, task_index=0, score=1.0)
        _log(worker, task_index=1, on_time=False, score=0.5)
        _log(worker, task_index=2, on_time=True, score=1.0, impacted=True)

        data = client.get(f"{BASE}/users/{worker.id}/summary").get_json()
        assert data["total_tasks"] == 3
        assert data["on_time_tasks"] == 2
        assert data["late_tasks"] == 1
        assert data["impacted_tasks"] == 1
        assert data["average_score"] == pytest.approx(0.8333, abs=1e-4)
        assert data["on_time_percentage"] == pytest.approx(66.7)

    def test_empty_summary(self, client, worker):
        data = client.get(f"{BASE}/users/{worker.id}/summary").get_json()
        assert data["total_tasks"] == 0
        assert data["average_score"] is None
        assert data["on_time_percentage"] is None


class TestHealth:
    def test_health_ok(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ok"
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["outbox"]["undelivered"] == 0

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
