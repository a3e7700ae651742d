"""
Scoring engine tests.

    - score(): calendar-day arithmetic, floor of one day, on-time rule
    - aggregate_score(): project percentage
    - scoring_baseline(): original vs revised planned date
    - apply_completion() / apply_termination(): counter updates
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from fms.services import scoring

DAY0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def _day(n, hour=9):
    return (DAY0 + timedelta(days=n)).replace(hour=hour)


def _objection(type="date_change", status="approved", impact_score=True):
    return SimpleNamespace(type=type, status=status, impact_score=impact_score)


def _task(planned=None, original=None, objections=(), anchor=None, sequence=0):
    return SimpleNamespace(
        sequence=sequence,
        planned_due_date=planned,
        original_planned_date=original,
        anchor_at=anchor,
        objections=list(objections),
        score_impacted=False,
        planned_days=None,
        actual_days=None,
        completion_score=None,
        was_on_time=None,
    )


def _project(on_time=0, late=0):
    return SimpleNamespace(
        id=1, start_at=DAY0, tasks_on_time=on_time, tasks_late=late, total_score=0,
    )


# ═════════════════════════════════════════════════════════════════════════════
# score()
# ═════════════════════════════════════════════════════════════════════════════


class TestScore:
    def test_completed_on_planned_day(self):
        result = scoring.score(DAY0, _day(10), _day(10))
        assert result.score == 1.0
        assert result.on_time is True
        assert (result.planned_days, result.actual_days) == (10, 10)

    def test_completed_late_halves_score(self):
        result = scoring.score(DAY0, _day(10), _day(20))
        assert result.score == 0.5
        assert result.on_time is False
        assert result.actual_days == 20

    def test_completed_early_is_full_marks(self):
        result = scoring.score(DAY0, _day(10), _day(5))
        assert result.score == 1.0
        assert result.on_time is True

    def test_time_of_day_ignored_on_planned_day(self):
        result = scoring.score(DAY0, _day(3, hour=8), _day(3, hour=23))
        assert result.on_time is True

    def test_same_day_plan_floors_to_one_day(self):
        result = scoring.score(DAY0, DAY0 + timedelta(hours=2), DAY0 + timedelta(hours=5))
        assert (result.planned_days, result.actual_days) == (1, 1)
        assert result.on_time is True

    def test_late_by_one_day_with_floor(self):
        result = scoring.score(DAY0, DAY0 + timedelta(hours=2), _day(2))
        assert result.on_time is False
        assert result.score == 0.5

    def test_score_monotonically_decreases(self):
        scores = [scoring.score(DAY0, _day(4), _day(n)).score for n in range(5, 12)]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s < 1.0 for s in scores)

    def test_naive_datetimes_treated_as_utc(self):
        naive = DAY0.replace(tzinfo=None)
        result = scoring.score(naive, _day(2).replace(tzinfo=None), _day(4))
        assert result.planned_days == 2
        assert result.actual_days == 4

    def test_percentage(self):
        result = scoring.score(DAY0, _day(2), _day(3))
        assert result.score_percentage == pytest.approx(66.7)
        assert result.to_dict()["on_time"] is False


class TestAggregate:
    @pytest.mark.parametrize("on_time,late,expected", [
        (0, 0, 0),
        (1, 0, 100),
        (1, 1, 50),
        (2, 1, 67),
        (1, 2, 33),
        (0, 3, 0),
        (1, 7, 13),
        (5, 3, 63),
        (7, 1, 88),
        (3, 5, 38),
    ])
    def test_aggregate_score(self, on_time, late, expected):
        assert scoring.aggregate_score(on_time, late) == expected


# ═════════════════════════════════════════════════════════════════════════════
# Baseline selection
# ═════════════════════════════════════════════════════════════════════════════


class TestBaseline:
    def test_original_date_used_by_default(self):
        task = _task(planned=_day(8), original=_day(4))
        planned, impacted, reason = scoring.scoring_baseline(task)
        assert planned == _day(4)
        assert impacted is False
        assert reason is None

    def test_revised_date_used_with_score_impact(self):
        task = _task(planned=_day(8), original=_day(4), objections=[_objection()])
        planned, impacted, reason = scoring.scoring_baseline(task)
        assert planned == _day(8)
        assert impacted is True
        assert reason == scoring.IMPACT_REASON

    @pytest.mark.parametrize("objection", [
        _objection(impact_score=False),
        _objection(status="pending"),
        _objection(status="rejected"),
        _objection(type="hold"),
    ])
    def test_non_impacting_objections_ignored(self, objection):
        task = _task(planned=_day(8), original=_day(4), objections=[objection])
        assert scoring.scoring_baseline(task)[0] == _day(4)

    def test_falls_back_to_planned_when_original_unset(self):
        task = _task(planned=_day(6))
        assert scoring.scoring_baseline(task)[0] == _day(6)

    def test_impact_flag_changes_outcome(self):
        completed = _day(7)
        with_impact = _task(planned=_day(10), original=_day(4),
                            objections=[_objection(impact_score=True)])
        without = _task(planned=_day(10), original=_day(4),
                        objections=[_objection(impact_score=False)])
        a = scoring.apply_completion(_project(), with_impact, completed)
        b = scoring.apply_completion(_project(), without, completed)
        assert a.on_time is True
        assert b.on_time is False
        assert with_impact.score_impacted is True
        assert without.score_impacted is False


# ═════════════════════════════════════════════════════════════════════════════
# Counter updates
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyCompletion:
    def test_on_time_updates_task_and_project(self):
        project = _project()
        task = _task(planned=_day(3), original=_day(3))
        result = scoring.apply_completion(project, task, _day(2))
        assert result.on_time is True
        assert task.completion_score == 1.0
        assert task.was_on_time is True
        assert task.planned_days == 3
        assert task.actual_days == 2
        assert (project.tasks_on_time, project.tasks_late, project.total_score) == (1, 0, 100)

    def test_late_updates_counters(self):
        project = _project(on_time=1)
        task = _task(planned=_day(2), original=_day(2))
        scoring.apply_completion(project, task, _day(4))
        assert (project.tasks_on_time, project.tasks_late, project.total_score) == (1, 1, 50)
        assert task.completion_score == 0.5

    def test_uses_task_anchor_when_set(self):
        project = _project()
        task = _task(planned=_day(7), original=_day(7), anchor=_day(5))
        result = scoring.apply_completion(project, task, _day(9))
        assert (result.planned_days, result.actual_days) == (2, 4)

    def test_unplanned_task_not_scored(self):
        project = _project()
        task = _task()
        assert scoring.apply_completion(project, task, _day(1)) is None
        assert (project.tasks_on_time, project.tasks_late) == (0, 0)


class TestApplyTermination:
    def test_exclude_keeps_counters(self):
        project = _project(on_time=1, late=1)
        scoring.apply_termination(project, _task(), "exclude")
        assert (project.tasks_on_time, project.tasks_late) == (1, 1)

    def test_on_time_policy(self):
        project = _project(late=1)
        scoring.apply_termination(project, _task(), "on_time")
        assert (project.tasks_on_time, project.total_score) == (1, 50)

    def test_late_policy(self):
        project = _project(on_time=1)
        scoring.apply_termination(project, _task(), "late")
        assert (project.tasks_late, project.total_score) == (1, 50)

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            scoring.apply_termination(_project(), _task(), "neutral")
