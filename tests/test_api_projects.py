"""
Project API tests — instantiation, task transitions, version tokens.

    POST   /api/v1/projects
    GET    /api/v1/projects, /api/v1/projects/<id>
    DELETE /api/v1/projects/<id>
    GET    /api/v1/projects/pending-tasks/<uid>
    POST   /api/v1/projects/<id>/tasks/<idx>/complete|start|resume
    PUT    /api/v1/projects/<id>/tasks/<idx>/planned-date
"""

import pytest

BASE = "/api/v1/projects"

STEPS = [
    {"what": "Collect documents", "offset_value": 2},
    {"what": "Review", "timing_mode": "dependent_offset", "offset_value": 1},
    {"what": "Sign off", "timing_mode": "ask_on_completion"},
]


@pytest.fixture()
def template(make_template):
    return make_template(STEPS)


@pytest.fixture()
def project(client, template, owner):
    res = client.post(BASE, json={
        "template_id": template.id,
        "start_at": "2024-01-01T09:00:00Z",
        "created_by": owner.id,
        "name": "Hire Alice",
    })
    assert res.status_code == 201
    return res.get_json()


def _task_url(project, idx, action):
    return f"{BASE}/{project['id']}/tasks/{idx}/{action}"


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateProject:
    def test_create(self, project):
        assert project["code"] == "PRJ-0001"
        assert project["name"] == "Hire Alice"
        assert project["status"] == "active"
        assert project["version"] == 1
        tasks = project["tasks"]
        assert [t["state"] for t in tasks] == ["pending", "not_started", "awaiting_date"]
        assert [t["status"] for t in tasks] == ["Pending", "NotStarted", "AwaitingDate"]
        assert tasks[0]["planned_due_date"] == "2024-01-03T09:00:00+00:00"
        assert tasks[1]["planned_due_date"] is None

    def test_etag_header(self, client, project):
        res = client.get(f"{BASE}/{project['id']}")
        assert res.headers["ETag"] == '"1"'

    @pytest.mark.parametrize("body,code", [
        ({"start_at": "2024-01-01", "created_by": 1}, "ERR_VALIDATION_REQUIRED"),
        ({"template_id": 1, "start_at": "2024-01-01"}, "ERR_VALIDATION_REQUIRED"),
        ({"template_id": 1, "created_by": 1}, "ERR_VALIDATION_REQUIRED"),
        ({"template_id": 1, "created_by": 1, "start_at": "next tuesday"}, "ERR_VALIDATION_INVALID"),
    ])
    def test_bad_input(self, client, body, code):
        res = client.post(BASE, json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == code

    def test_unknown_template(self, client, owner):
        res = client.post(BASE, json={
            "template_id": 999, "start_at": "2024-01-01", "created_by": owner.id,
        })
        assert res.status_code == 404

    def test_unresolvable_assignee_is_422(self, client, make_template, make_user, owner):
        gone = make_user("gone", status="inactive")
        template = make_template([{"what": "a", "assignee_ids": [gone.id]}])
        res = client.post(BASE, json={
            "template_id": template.id, "start_at": "2024-01-01", "created_by": owner.id,
        })
        assert res.status_code == 422
        assert res.get_json()["details"] == {"steps": [1]}


class TestReadProjects:
    def test_list_filtered_by_user(self, client, project, owner, make_user):
        outsider = make_user("outsider")
        assert client.get(f"{BASE}?user_id={owner.id}").get_json()["total"] == 1
        assert client.get(f"{BASE}?user_id={outsider.id}").get_json()["total"] == 0
        assert client.get(BASE).get_json()["total"] == 1

    def test_get_unknown(self, client):
        assert client.get(f"{BASE}/999").status_code == 404

    def test_pending_tasks(self, client, project, worker):
        res = client.get(f"{BASE}/pending-tasks/{worker.id}")
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["task"]["what"] == "Collect documents"


class TestDeleteProject:
    def test_admin_deletes(self, client, project, admin):
        res = client.delete(f"{BASE}/{project['id']}?user_id={admin.id}")
        assert res.status_code == 200
        assert client.get(f"{BASE}/{project['id']}").status_code == 404

    def test_non_admin_forbidden(self, client, project, owner):
        res = client.delete(f"{BASE}/{project['id']}?user_id={owner.id}")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_user_required(self, client, project):
        assert client.delete(f"{BASE}/{project['id']}").status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Task transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestCompleteEndpoint:
    def test_complete_first_task(self, client, project, worker):
        res = client.post(_task_url(project, 0, "complete"), json={
            "completed_by": worker.id, "notes": "done", "version": 1,
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["version"] == 2
        assert res.headers["ETag"] == '"2"'
        assert data["tasks"][0]["state"] == "done"
        assert data["tasks"][1]["state"] == "pending"
        assert data["tasks"][1]["planned_due_date"] is not None

    def test_stale_version_conflict(self, client, project, worker):
        client.post(_task_url(project, 0, "start"), json={"user_id": worker.id})
        res = client.post(_task_url(project, 0, "complete"), json={
            "completed_by": worker.id, "version": 1,
        })
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_VERSION"
        assert body["details"] == {"expected_version": 1, "current_version": 2}

    def test_if_match_header(self, client, project, worker):
        res = client.post(
            _task_url(project, 0, "complete"),
            json={"completed_by": worker.id},
            headers={"If-Match": '"7"'},
        )
        assert res.status_code == 409

    def test_garbage_version(self, client, project, worker):
        res = client.post(_task_url(project, 0, "complete"), json={
            "completed_by": worker.id, "version": "abc",
        })
        assert res.status_code == 400

    def test_out_of_order_is_409(self, client, project, worker):
        res = client.post(_task_url(project, 1, "complete"), json={"completed_by": worker.id})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
        assert "Task 1" in res.get_json()["error"]

    def test_unknown_task_is_404(self, client, project, worker):
        res = client.post(_task_url(project, 9, "complete"), json={"completed_by": worker.id})
        assert res.status_code == 404

    def test_completed_by_required(self, client, project):
        res = client.post(_task_url(project, 0, "complete"), json={})
        assert res.status_code == 400

    def test_attachments_must_be_objects(self, client, project, worker):
        res = client.post(_task_url(project, 0, "complete"), json={
            "completed_by": worker.id, "attachments": ["file.pdf"],
        })
        assert res.status_code == 400

    def test_awaiting_date_completed_with_planned_date(self, client, project, worker):
        client.post(_task_url(project, 0, "complete"), json={"completed_by": worker.id})
        client.post(_task_url(project, 1, "complete"), json={"completed_by": worker.id})
        res = client.post(_task_url(project, 2, "complete"), json={
            "completed_by": worker.id, "planned_date": "2099-01-01",
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["tasks"][2]["state"] == "done"
        assert data["status"] == "completed"


class TestOtherTransitions:
    def test_start(self, client, project, worker):
        res = client.post(_task_url(project, 0, "start"), json={"user_id": worker.id})
        assert res.status_code == 200
        assert res.get_json()["tasks"][0]["state"] == "in_progress"

    def test_start_requires_user(self, client, project):
        assert client.post(_task_url(project, 0, "start"), json={}).status_code == 400

    def test_planned_date(self, client, project, worker):
        client.post(_task_url(project, 0, "complete"), json={"completed_by": worker.id})
        client.post(_task_url(project, 1, "complete"), json={"completed_by": worker.id})
        res = client.put(_task_url(project, 2, "planned-date"), json={"planned_date": "2099-01-01"})
        assert res.status_code == 200
        task = res.get_json()["tasks"][2]
        assert task["state"] == "pending"
        assert task["planned_due_date"] == "2099-01-01T00:00:00+00:00"

    def test_planned_date_on_wrong_state(self, client, project):
        res = client.put(_task_url(project, 0, "planned-date"), json={"planned_date": "2099-01-01"})
        assert res.status_code == 409

    def test_planned_date_required(self, client, project):
        assert client.put(_task_url(project, 2, "planned-date"), json={}).status_code == 400

    def test_resume_not_held(self, client, project, owner):
        res = client.post(_task_url(project, 0, "resume"), json={"user_id": owner.id})
        assert res.status_code == 409
