"""
Optimistic concurrency tests.

Every mutating service accepts the caller's version token; a stale token or
a concurrent writer detected at flush raises ConcurrencyConflict and
persists nothing.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from fms.core.exceptions import ConcurrencyConflict
from fms.models import db
from fms.models.objection import Objection
from fms.models.outbox import OutboxEvent
from fms.models.project import Project
from fms.services import objection_service, project_service, task_lifecycle

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def project(make_template, owner):
    template = make_template([
        {"what": "Collect documents", "offset_value": 2},
        {"what": "Review", "timing_mode": "dependent_offset", "offset_value": 1},
    ])
    return project_service.instantiate_project(template.id, START, owner.id)


def _simulate_concurrent_write(project):
    """Bump the stored version behind the session's back."""
    db.session.execute(
        db.text("UPDATE projects SET version = version + 1 WHERE id = :id"),
        {"id": project.id},
    )
    db.session.commit()
    stored = project.version
    set_committed_value(project, "version", stored - 1)
    return stored


class TestExpectedVersion:
    def test_matching_version_accepted(self, project, worker):
        version = project.version
        task_lifecycle.complete_task(
            project.id, 0, worker.id, expected_version=version, now=START + timedelta(days=1),
        )
        assert project.version == version + 1

    def test_stale_version_rejected(self, project, worker):
        stale = project.version
        task_lifecycle.start_task(project.id, 0, worker.id)
        with pytest.raises(ConcurrencyConflict) as exc:
            task_lifecycle.complete_task(project.id, 0, worker.id, expected_version=stale)
        assert exc.value.expected == stale
        assert exc.value.actual == stale + 1
        assert project.tasks[0].state == "in_progress"

    def test_stale_objection_raise(self, project, worker):
        with pytest.raises(ConcurrencyConflict):
            objection_service.raise_objection(
                project.id, 0, "hold", "x", worker.id, expected_version=project.version + 3,
            )
        assert Objection.query.count() == 0

    def test_stale_objection_response(self, project, worker, owner):
        objection = objection_service.raise_objection(project.id, 0, "hold", "x", worker.id)
        with pytest.raises(ConcurrencyConflict):
            objection_service.respond_to_objection(
                project.id, 0, objection.id, "approved", owner.id, expected_version=1,
            )
        assert objection.status == "pending"

    def test_each_mutation_bumps_version(self, project, worker, owner):
        versions = [project.version]
        task_lifecycle.start_task(project.id, 0, worker.id)
        versions.append(project.version)
        objection = objection_service.raise_objection(project.id, 0, "hold", "x", worker.id)
        versions.append(project.version)
        objection_service.respond_to_objection(project.id, 0, objection.id, "approved", owner.id)
        versions.append(project.version)
        task_lifecycle.resume_task(project.id, 0, owner.id)
        versions.append(project.version)
        assert versions == list(range(versions[0], versions[0] + 5))


class TestConcurrentWriter:
    def test_lost_update_detected_on_completion(self, project, worker):
        stored = _simulate_concurrent_write(project)

        with pytest.raises(ConcurrencyConflict) as exc:
            task_lifecycle.complete_task(project.id, 0, worker.id, now=START + timedelta(days=1))
        assert exc.value.actual == stored

        fresh = db.session.get(Project, project.id)
        assert fresh.tasks[0].state == "pending"
        assert fresh.tasks_on_time == 0
        assert OutboxEvent.query.count() == 0

    def test_lost_update_detected_on_objection(self, project, worker):
        _simulate_concurrent_write(project)
        with pytest.raises(ConcurrencyConflict):
            objection_service.raise_objection(project.id, 0, "hold", "x", worker.id)
        assert Objection.query.count() == 0

    def test_retry_after_reload_succeeds(self, project, worker):
        _simulate_concurrent_write(project)
        with pytest.raises(ConcurrencyConflict):
            task_lifecycle.start_task(project.id, 0, worker.id)
        current = db.session.get(Project, project.id).version
        task_lifecycle.start_task(project.id, 0, worker.id, expected_version=current)
        assert db.session.get(Project, project.id).tasks[0].state == "in_progress"

    def test_lost_update_detected_on_termination(self, project, worker, owner):
        objection = objection_service.raise_objection(project.id, 0, "terminate", "x", worker.id)
        stored = _simulate_concurrent_write(project)

        with pytest.raises(ConcurrencyConflict) as exc:
            objection_service.respond_to_objection(project.id, 0, objection.id, "approved", owner.id)
        assert exc.value.actual == stored

        fresh = db.session.get(Project, project.id)
        assert [t.state for t in fresh.tasks] == ["pending", "not_started"]
        assert db.session.get(Objection, objection.id).status == "pending"

    def test_stale_flush_inside_write_block(self, project):
        stored = _simulate_concurrent_write(project)
        with pytest.raises(ConcurrencyConflict) as exc:
            with project_service.project_write(project.id) as locked:
                locked.name = "Renamed"
                db.session.flush()
        assert exc.value.actual == stored
        assert db.session.get(Project, project.id).name != "Renamed"


class TestSingleVersionBump:
    def test_completion_with_dependent_successor(self, project, worker):
        version = project.version
        task_lifecycle.complete_task(project.id, 0, worker.id, now=START + timedelta(days=1))
        db.session.expire_all()
        assert db.session.get(Project, project.id).version == version + 1

    def test_termination_activating_successor(self, project, worker, owner):
        objection = objection_service.raise_objection(project.id, 0, "terminate", "x", worker.id)
        version = project.version
        objection_service.respond_to_objection(
            project.id, 0, objection.id, "approved", owner.id, now=START + timedelta(days=1),
        )
        db.session.expire_all()
        fresh = db.session.get(Project, project.id)
        assert fresh.version == version + 1
        assert fresh.tasks[1].state == "pending"
