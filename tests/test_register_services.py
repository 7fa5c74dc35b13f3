"""
RiskWise
Tests — entity services (goal, potential risk, risk cause, control measure).

Covers:
    - sequence numbering and validation before I/O
    - context scoping: foreign rows read as None, mutations refused
    - cascading deletes across every level, idempotent repeats
    - an interrupted cascade rolls back as a whole
    - analysis timestamps and control ordering
"""

import pytest
from sqlalchemy.exc import OperationalError

from riskwise.core.exceptions import (
    ContextMismatchError,
    NotFoundError,
    StoreIOError,
    ValidationError,
)
from riskwise.models import db
from riskwise.models.monitoring import RiskExposure
from riskwise.models.risk_register import ControlMeasure, Goal, PotentialRisk, RiskCause
from riskwise.services import (
    control_measure_service,
    goal_service,
    monitoring_service,
    potential_risk_service,
    risk_cause_service,
    risk_exposure_service,
)
from riskwise.services.app_store import RiskRegisterStore
from riskwise.services.code_generator import (
    next_control_measure_sequence,
    next_goal_sequence,
    next_potential_risk_sequence,
)
from tests.conftest import OTHER_USER_ID, PERIOD, USER_ID


def _goal(seq=None, name="Goal"):
    seq = seq or next_goal_sequence(USER_ID, PERIOD)
    goal = goal_service.add_goal({"name": name}, USER_ID, PERIOD, seq)
    db.session.commit()
    return goal


def _risk(goal, description="Risk"):
    seq = next_potential_risk_sequence(goal.id, USER_ID, PERIOD)
    risk = potential_risk_service.add_potential_risk(
        {"description": description}, goal.id, USER_ID, PERIOD, seq,
    )
    db.session.commit()
    return risk


def _cause(risk, seq=1, **extra):
    data = {"description": "Cause"}
    data.update(extra)
    cause = risk_cause_service.add_risk_cause(data, risk.id, risk.goal_id, USER_ID, PERIOD, seq)
    db.session.commit()
    return cause


def _control(cause, control_type="Prv", **extra):
    data = {"control_type": control_type, "description": "Control"}
    data.update(extra)
    seq = next_control_measure_sequence(cause.id, control_type, USER_ID, PERIOD)
    control = control_measure_service.add_control_measure(
        data, cause.id, cause.potential_risk_id, cause.goal_id, USER_ID, PERIOD, seq,
    )
    db.session.commit()
    return control


class TestGoalService:
    def test_add_goal_assigns_code(self):
        goal = _goal()
        assert goal.sequence_number == 1
        assert goal.code == "S1"

    def test_sequence_follows_highest_survivor(self):
        codes = [_goal().code for _ in range(3)]
        assert codes == ["S1", "S2", "S3"]
        middle = goal_service.list_goals(USER_ID, PERIOD)[1]
        goal_service.delete_goal(middle.id, USER_ID, PERIOD)
        db.session.commit()
        assert _goal().code == "S4"
        assert [g.code for g in goal_service.list_goals(USER_ID, PERIOD)] == ["S1", "S3", "S4"]

    def test_invalid_sequence_rejected(self):
        for bad in (0, -1, "1", 1.5, True):
            with pytest.raises(ValidationError):
                goal_service.add_goal({"name": "G"}, USER_ID, PERIOD, bad)

    def test_name_required(self):
        with pytest.raises(ValidationError):
            goal_service.add_goal({"name": "  "}, USER_ID, PERIOD, 1)

    def test_context_required(self):
        with pytest.raises(ValidationError):
            goal_service.add_goal({"name": "G"}, "", PERIOD, 1)
        with pytest.raises(ValidationError):
            goal_service.list_goals(USER_ID, None)

    def test_list_sorted_by_sequence(self):
        _goal(seq=3, name="third")
        _goal(seq=1, name="first")
        _goal(seq=2, name="second")
        assert [g.name for g in goal_service.list_goals(USER_ID, PERIOD)] == [
            "first", "second", "third",
        ]

    def test_foreign_goal_reads_as_none(self):
        goal = _goal()
        assert goal_service.get_goal_by_id(goal.id, OTHER_USER_ID, PERIOD) is None
        assert goal_service.get_goal_by_id(goal.id, USER_ID, "2024") is None
        assert goal_service.get_goal_by_id(goal.id, USER_ID, PERIOD).id == goal.id

    def test_foreign_update_and_delete_refused(self):
        goal = _goal()
        with pytest.raises(ContextMismatchError):
            goal_service.update_goal(goal.id, OTHER_USER_ID, PERIOD, {"name": "x"})
        with pytest.raises(ContextMismatchError):
            goal_service.delete_goal(goal.id, OTHER_USER_ID, PERIOD)
        assert db.session.get(Goal, goal.id) is not None

    def test_update_goal(self):
        goal = _goal()
        updated = goal_service.update_goal(goal.id, USER_ID, PERIOD, {"name": "Renamed"})
        db.session.commit()
        assert updated.name == "Renamed"
        assert updated.updated_at is not None

    def test_code_is_immutable(self):
        goal = _goal()
        with pytest.raises(ValidationError):
            goal_service.update_goal(goal.id, USER_ID, PERIOD, {"code": "S9"})

    def test_update_missing_goal(self):
        with pytest.raises(NotFoundError):
            goal_service.update_goal("missing", USER_ID, PERIOD, {"name": "x"})


class TestPotentialRiskService:
    def test_sequences_per_goal(self):
        g1, g2 = _goal(), _goal()
        r1, r2 = _risk(g1), _risk(g1)
        r3 = _risk(g2)
        assert [r1.sequence_number, r2.sequence_number, r3.sequence_number] == [1, 2, 1]

    def test_deletion_does_not_renumber(self):
        goal = _goal()
        risks = [_risk(goal, f"R{i}") for i in range(3)]
        potential_risk_service.delete_potential_risk(risks[1].id, USER_ID, PERIOD)
        db.session.commit()
        remaining = potential_risk_service.list_potential_risks_by_goal(goal.id, USER_ID, PERIOD)
        assert [r.sequence_number for r in remaining] == [1, 3]
        assert _risk(goal).sequence_number == 4

    def test_parent_goal_must_be_in_context(self):
        goal = _goal()
        with pytest.raises(ContextMismatchError):
            potential_risk_service.add_potential_risk(
                {"description": "x"}, goal.id, OTHER_USER_ID, PERIOD, 1,
            )
        with pytest.raises(NotFoundError):
            potential_risk_service.add_potential_risk(
                {"description": "x"}, "missing", USER_ID, PERIOD, 1,
            )

    def test_invalid_category(self):
        goal = _goal()
        with pytest.raises(ValidationError):
            potential_risk_service.add_potential_risk(
                {"description": "x", "category": "Weather"}, goal.id, USER_ID, PERIOD, 1,
            )

    def test_update_category_and_owner(self):
        risk = _risk(_goal())
        updated = potential_risk_service.update_potential_risk(
            risk.id, USER_ID, PERIOD, {"category": "Fraud", "owner": "Finance head"},
        )
        assert (updated.category, updated.owner) == ("Fraud", "Finance head")


class TestRiskCauseService:
    def test_analysis_sets_timestamp(self):
        cause = _cause(_risk(_goal()))
        assert cause.analysis_updated_at is None
        updated = risk_cause_service.update_risk_cause(
            cause.id, USER_ID, PERIOD, {"likelihood": "High", "impact": "Very High"},
        )
        db.session.commit()
        assert updated.analysis_updated_at is not None
        data = updated.to_dict()
        assert (data["risk_score"], data["risk_level"]) == (20, "Very High")

    def test_unanalysed_cause_has_no_score(self):
        data = _cause(_risk(_goal())).to_dict()
        assert data["risk_score"] is None
        assert data["risk_level"] == "N/A"

    def test_invalid_levels_and_source(self):
        risk = _risk(_goal())
        for bad in ({"likelihood": "Huge"}, {"impact": "1"}, {"source": "Vendor"}):
            with pytest.raises(ValidationError):
                risk_cause_service.add_risk_cause(
                    dict(description="x", **bad), risk.id, risk.goal_id, USER_ID, PERIOD, 1,
                )

    def test_goal_id_must_match_parent(self):
        risk = _risk(_goal())
        other_goal = _goal()
        with pytest.raises(ValidationError):
            risk_cause_service.add_risk_cause(
                {"description": "x"}, risk.id, other_goal.id, USER_ID, PERIOD, 1,
            )

    def test_source_defaults_to_internal(self):
        assert _cause(_risk(_goal())).source == "Internal"


class TestControlMeasureService:
    def test_sequence_per_type(self):
        cause = _cause(_risk(_goal()))
        prv1 = _control(cause, "Prv")
        rm1 = _control(cause, "RM")
        prv2 = _control(cause, "Prv")
        assert (prv1.sequence_number, rm1.sequence_number, prv2.sequence_number) == (1, 1, 2)

    def test_listing_groups_by_type(self):
        cause = _cause(_risk(_goal()))
        _control(cause, "Crr")
        _control(cause, "RM")
        _control(cause, "Prv")
        _control(cause, "Prv")
        listed = control_measure_service.list_control_measures_by_risk_cause(
            cause.id, USER_ID, PERIOD,
        )
        assert [(c.control_type, c.sequence_number) for c in listed] == [
            ("Prv", 1), ("Prv", 2), ("RM", 1), ("Crr", 1),
        ]

    def test_budget_and_deadline_validation(self):
        cause = _cause(_risk(_goal()))
        for bad in ({"budget": 0}, {"budget": -5}, {"budget": "abc"}, {"deadline": "soon"}):
            with pytest.raises(ValidationError):
                control_measure_service.add_control_measure(
                    dict(control_type="Prv", description="x", **bad),
                    cause.id, None, None, USER_ID, PERIOD, 1,
                )

    def test_deadline_parsed(self):
        control = _control(_cause(_risk(_goal())), budget="1500000", deadline="2025-06-30")
        assert control.budget == 1500000.0
        assert control.deadline.isoformat() == "2025-06-30"

    def test_invalid_control_type(self):
        cause = _cause(_risk(_goal()))
        with pytest.raises(ValidationError):
            control_measure_service.add_control_measure(
                {"control_type": "XX", "description": "x"}, cause.id, None, None,
                USER_ID, PERIOD, 1,
            )

    def test_type_change_takes_next_number_of_new_type(self):
        cause = _cause(_risk(_goal()))
        _control(cause, "RM")
        prv = _control(cause, "Prv")
        moved = control_measure_service.update_control_measure(
            prv.id, USER_ID, PERIOD, {"control_type": "RM"},
        )
        assert (moved.control_type, moved.sequence_number) == ("RM", 2)


class TestCascadingDeletes:
    def _tree(self):
        goal = _goal()
        risk = _risk(goal)
        cause = _cause(risk)
        control = _control(cause)
        session = monitoring_service.add_monitoring_session(
            {"name": "Q1", "start_date": "2025-01-01", "end_date": "2025-03-31"},
            USER_ID, PERIOD,
        )
        db.session.commit()
        risk_exposure_service.upsert_risk_exposure({
            "monitoring_session_id": session.id, "risk_cause_id": cause.id,
            "user_id": USER_ID, "period": PERIOD, "exposure_value": 2,
        })
        db.session.commit()
        return goal, risk, cause, control, session

    def _counts(self):
        return {
            model.__tablename__: db.session.query(model).count()
            for model in (Goal, PotentialRisk, RiskCause, ControlMeasure, RiskExposure)
        }

    def test_goal_delete_removes_every_descendant(self):
        goal, *_ = self._tree()
        counts = goal_service.delete_goal(goal.id, USER_ID, PERIOD)
        db.session.commit()
        assert counts["risk_exposures"] == 1
        assert set(self._counts().values()) == {0}

    def test_potential_risk_delete_keeps_goal(self):
        goal, risk, *_ = self._tree()
        potential_risk_service.delete_potential_risk(risk.id, USER_ID, PERIOD)
        db.session.commit()
        assert self._counts() == {
            "goals": 1, "potential_risks": 0, "risk_causes": 0,
            "control_measures": 0, "risk_exposures": 0,
        }

    def test_risk_cause_delete_purges_exposures(self):
        _, _, cause, _, _ = self._tree()
        risk_cause_service.delete_risk_cause(cause.id, USER_ID, PERIOD)
        db.session.commit()
        counts = self._counts()
        assert counts["risk_causes"] == counts["control_measures"] == counts["risk_exposures"] == 0
        assert counts["potential_risks"] == 1

    def test_repeated_delete_is_noop(self):
        goal, _, cause, control, _ = self._tree()
        goal_id, cause_id, control_id = goal.id, cause.id, control.id
        risk_cause_service.delete_risk_cause(cause_id, USER_ID, PERIOD)
        db.session.commit()
        assert risk_cause_service.delete_risk_cause(cause_id, USER_ID, PERIOD) == {}
        assert control_measure_service.delete_control_measure(control_id, USER_ID, PERIOD) is False
        assert goal_service.delete_goal("never-existed", USER_ID, PERIOD) == {}
        goal_service.delete_goal(goal_id, USER_ID, PERIOD)
        db.session.commit()
        assert goal_service.delete_goal(goal_id, USER_ID, PERIOD) == {}

    def test_interrupted_goal_delete_leaves_tree_intact(self, monkeypatch):
        goal, *_ = self._tree()
        goal_id = goal.id
        purge = goal_service.purge_goal_subtree

        def purge_then_fail(*args, **kwargs):
            purge(*args, **kwargs)
            raise OperationalError("DELETE FROM goals", {}, Exception("disk I/O error"))

        monkeypatch.setattr(goal_service, "purge_goal_subtree", purge_then_fail)
        with pytest.raises(StoreIOError):
            goal_service.delete_goal(goal_id, USER_ID, PERIOD)
        db.session.rollback()

        reader = RiskRegisterStore()
        reader.trigger_initial_data_fetch(USER_ID, PERIOD)
        loaded = (reader.goals, reader.potential_risks, reader.risk_causes, reader.control_measures)
        assert [len(items) for items in loaded] == [1, 1, 1, 1]
        assert reader.goals[0]["id"] == goal_id
        assert db.session.query(RiskExposure).count() == 1

    def test_session_delete_purges_its_exposures(self):
        *_, session = self._tree()
        assert monitoring_service.delete_monitoring_session(session.id, USER_ID, PERIOD) == 1
        db.session.commit()
        assert db.session.query(RiskExposure).count() == 0
        assert db.session.query(RiskCause).count() == 1
