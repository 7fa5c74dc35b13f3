"""
RiskWise
Tests — RiskRegisterStore (coordinating in-memory store).

Covers:
    - init / reset / context switch
    - staged fetch goals → potential risks → risk causes → control measures
    - failed stage resets itself and everything downstream
    - cache-first lookups, scoped control reload
    - delete keeps the cache free of orphans
    - bulk deletes and suggestion imports with per-item results
    - priority list, risk matrix, end-to-end register walk-through
"""

import pytest

from riskwise.core.exceptions import ContextMismatchError, StoreIOError, ValidationError
from riskwise.services import control_measure_service, monitoring_service, risk_cause_service
from riskwise.services.app_store import RiskRegisterStore
from tests.conftest import OTHER_USER_ID, PERIOD, USER_ID


class TestContext:
    def test_uninitialised_store_refuses_work(self):
        with pytest.raises(ValidationError):
            RiskRegisterStore().add_goal({"name": "G"})

    def test_init_requires_both_keys(self):
        with pytest.raises(ValidationError):
            RiskRegisterStore().init(USER_ID, "")

    def test_switching_context_resets_cache(self, store, register):
        assert store.goals
        store.init(OTHER_USER_ID, PERIOD)
        assert store.context == (OTHER_USER_ID, PERIOD)
        assert store.goals == [] and store.risk_causes == []
        assert store.data_fetched_for_period is None

    def test_same_context_keeps_cache(self, store, register):
        store.init(USER_ID, PERIOD)
        assert len(store.goals) == 1

    def test_reset(self, store, register):
        store.reset()
        assert store.context == (None, None)
        assert all(not items for items in store.collections.values())


class TestFetch:
    def test_initial_fetch_loads_every_stage_once(self, register):
        fresh = RiskRegisterStore()
        assert fresh.trigger_initial_data_fetch(USER_ID, PERIOD) is True
        assert [g["code"] for g in fresh.goals] == ["S1"]
        assert [p["code"] for p in fresh.potential_risks] == ["S1.PR1"]
        assert [c["code"] for c in fresh.risk_causes] == ["S1.PR1.PC1"]
        assert [c["code"] for c in fresh.control_measures] == ["S1.PR1.PC1.Prv.1"]
        assert fresh.data_fetched_for_period == (USER_ID, PERIOD)
        assert not any(fresh.loading.values())

        assert fresh.trigger_initial_data_fetch(USER_ID, PERIOD) is False
        assert fresh.trigger_initial_data_fetch(USER_ID, PERIOD, force=True) is True

    def test_fetch_only_sees_own_context(self, register):
        other = RiskRegisterStore()
        other.trigger_initial_data_fetch(OTHER_USER_ID, PERIOD)
        assert other.goals == []
        next_year = RiskRegisterStore()
        next_year.trigger_initial_data_fetch(USER_ID, "2026")
        assert next_year.goals == []

    def test_failed_stage_resets_downstream(self, register, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreIOError("Failed to list risk causes: OperationalError")

        monkeypatch.setattr(risk_cause_service, "list_risk_causes_by_potential_risk", broken)
        fresh = RiskRegisterStore().init(USER_ID, PERIOD)
        with pytest.raises(StoreIOError):
            fresh.fetch_goals()

        assert len(fresh.goals) == 1
        assert len(fresh.potential_risks) == 1
        assert fresh.risk_causes == [] and fresh.control_measures == []
        assert not fresh.loading["risk_causes"] and not fresh.loading["control_measures"]
        assert fresh.data_fetched_for_period is None
        assert fresh.error_notices[-1]["scope"] == "load risk causes"

    def test_failed_control_reload_allows_retry(self, register, monkeypatch):
        fresh = RiskRegisterStore()
        fresh.trigger_initial_data_fetch(USER_ID, PERIOD)
        original = control_measure_service.list_control_measures

        def broken(*args, **kwargs):
            raise StoreIOError("Failed to list control measures: OperationalError")

        monkeypatch.setattr(control_measure_service, "list_control_measures", broken)
        with pytest.raises(StoreIOError):
            fresh.fetch_control_measures()
        assert fresh.control_measures == []
        assert fresh.data_fetched_for_period is None
        assert fresh.error_notices[-1]["scope"] == "load control measures"

        monkeypatch.setattr(control_measure_service, "list_control_measures", original)
        assert fresh.trigger_initial_data_fetch(USER_ID, PERIOD) is True
        assert [c["code"] for c in fresh.control_measures] == ["S1.PR1.PC1.Prv.1"]

    def test_failed_session_load_clears_marker(self, register, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreIOError("Failed to list monitoring sessions: OperationalError")

        monkeypatch.setattr(monitoring_service, "list_monitoring_sessions", broken)
        fresh = RiskRegisterStore()
        with pytest.raises(StoreIOError):
            fresh.trigger_initial_data_fetch(USER_ID, PERIOD)
        assert fresh.data_fetched_for_period is None
        assert len(fresh.goals) == 1
        assert fresh.monitoring_sessions == []

        monkeypatch.undo()
        assert fresh.trigger_initial_data_fetch(USER_ID, PERIOD) is True
        assert fresh.data_fetched_for_period == (USER_ID, PERIOD)

    def test_fetch_risk_causes_reloads_from_that_stage(self, store, register):
        store.risk_causes.clear()
        store.control_measures.clear()
        store.fetch_risk_causes()
        assert [c["code"] for c in store.risk_causes] == ["S1.PR1.PC1"]
        assert len(store.control_measures) == 1

    def test_scoped_control_reload_keeps_other_causes(self, store, register):
        rc2 = store.add_risk_cause({"description": "Budget cuts"}, register["potential_risk"]["id"])
        store.add_control_measure({"control_type": "RM", "description": "Reserve fund"}, rc2["id"])
        target = register["risk_cause"]["id"]
        fresh = store.fetch_control_measures(risk_cause_id=target)
        assert [c["code"] for c in fresh] == ["S1.PR1.PC1.Prv.1"]
        assert sorted(c["code"] for c in store.control_measures) == [
            "S1.PR1.PC1.Prv.1", "S1.PR1.PC2.RM.1",
        ]

    def test_global_control_reload(self, store, register):
        store.control_measures.clear()
        store.fetch_control_measures()
        assert [c["code"] for c in store.control_measures] == ["S1.PR1.PC1.Prv.1"]


class TestCacheFirstLookups:
    def test_get_prefers_cache(self, store, register):
        store.goals[0]["name"] = "cached copy"
        assert store.get_goal_by_id(register["goal"]["id"])["name"] == "cached copy"

    def test_get_falls_back_to_database(self, register):
        fresh = RiskRegisterStore().init(USER_ID, PERIOD)
        cause = fresh.get_risk_cause_by_id(register["risk_cause"]["id"])
        assert cause["code"] == "S1.PR1.PC1"

    def test_foreign_record_reads_as_none(self, register):
        other = RiskRegisterStore().init(OTHER_USER_ID, PERIOD)
        assert other.get_goal_by_id(register["goal"]["id"]) is None
        assert other.get_control_measure_by_id(register["control_measure"]["id"]) is None


class TestMutations:
    def test_add_assigns_codes(self, store, register):
        pr2 = store.add_potential_risk({"description": "Data breach"}, register["goal"]["id"])
        assert pr2["code"] == "S1.PR2"
        crr = store.add_control_measure(
            {"control_type": "Crr", "description": "Incident playbook"}, register["risk_cause"]["id"],
        )
        assert crr["code"] == "S1.PR1.PC1.Crr.1"
        assert [c["control_type"] for c in store.control_measures_for_cause(register["risk_cause"]["id"])] \
            == ["Prv", "Crr"]

    def test_failed_mutation_leaves_cache_and_records_notice(self, store, register):
        before = [dict(g) for g in store.goals]
        with pytest.raises(ValidationError):
            store.update_goal(register["goal"]["id"], {"name": ""})
        assert store.goals == before
        assert store.error_notices
        store.dismiss_notices()
        assert store.error_notices == []

    def test_update_refreshes_cached_item(self, store, register):
        updated = store.update_risk_cause(
            register["risk_cause"]["id"], {"likelihood": "Low", "impact": "Low"},
        )
        assert updated["risk_score"] == 4
        assert store.get_risk_cause_by_id(register["risk_cause"]["id"])["risk_level"] == "Very Low"

    def test_delete_goal_drops_every_cached_descendant(self, store, register):
        store.delete_goal(register["goal"]["id"])
        for name in ("goals", "potential_risks", "risk_causes", "control_measures"):
            assert store.collections[name] == []

    def test_delete_cause_keeps_siblings(self, store, register):
        rc2 = store.add_risk_cause({"description": "Budget cuts"}, register["potential_risk"]["id"])
        store.delete_risk_cause(register["risk_cause"]["id"])
        assert [c["id"] for c in store.risk_causes] == [rc2["id"]]
        assert store.control_measures == []

    def test_delete_missing_is_noop(self, store):
        assert store.delete_goal("missing") == {}
        assert store.delete_control_measure("missing") is False

    def test_delete_foreign_refused(self, register):
        other = RiskRegisterStore().init(OTHER_USER_ID, PERIOD)
        with pytest.raises(ContextMismatchError):
            other.delete_goal(register["goal"]["id"])


class TestBatches:
    def test_bulk_delete_reports_each_item(self, store, register):
        pr2 = store.add_potential_risk({"description": "Second"}, register["goal"]["id"])
        other = RiskRegisterStore().init(OTHER_USER_ID, PERIOD)
        foreign_goal = other.add_goal({"name": "Theirs"})
        foreign_pr = other.add_potential_risk({"description": "Theirs"}, foreign_goal["id"])

        result = store.bulk_delete_potential_risks(
            [register["potential_risk"]["id"], foreign_pr["id"], pr2["id"]],
        )
        assert [r.key for r in result.failures] == [foreign_pr["id"]]
        assert len(result.successes) == 2
        assert store.potential_risks == []
        assert other.get_potential_risk_by_id(foreign_pr["id"]) is not None

    def test_bulk_delete_causes(self, store, register):
        result = store.bulk_delete_risk_causes([register["risk_cause"]["id"], "missing"])
        assert result.ok
        assert store.risk_causes == []

    def test_import_potential_risks_from_provider(self, store, register):
        calls = []

        def provider(context, count):
            calls.append((context, count))
            return [
                {"description": "Vendor delays", "category": "Operational"},
                {"description": "Bad category", "category": "Weather"},
                {"description": "Regulation change", "category": "Compliance"},
            ]

        result = store.import_potential_risk_suggestions(
            register["goal"]["id"], provider=provider, context="public service", count=3,
        )
        assert calls == [("public service", 3)]
        assert [r.key for r in result.failures] == ["1"]
        assert [r.value["code"] for r in result.successes] == ["S1.PR2", "S1.PR3"]

    def test_import_requires_input(self, store, register):
        with pytest.raises(ValidationError):
            store.import_potential_risk_suggestions(register["goal"]["id"])
        assert store.import_risk_cause_suggestions(
            register["potential_risk"]["id"], suggestions=[],
        ).items == []

    def test_import_risk_causes(self, store, register):
        result = store.import_risk_cause_suggestions(
            register["potential_risk"]["id"],
            suggestions=[{"description": "Outdated SOP"}, {"description": "Supplier exit",
                                                           "source": "External"}],
        )
        assert [r.value["code"] for r in result.successes] == ["S1.PR1.PC2", "S1.PR1.PC3"]
        assert result.successes[1].value["source"] == "External"


class TestAnalysisViews:
    def test_priority_list_orders_by_score(self, store, register):
        pr = register["potential_risk"]["id"]
        store.add_risk_cause({"description": "Mid", "likelihood": "Medium", "impact": "Medium"}, pr)
        store.add_risk_cause({"description": "Not analysed"}, pr)
        rows = store.risk_priority_list()
        assert [(r["code"], r["risk_score"], r["risk_level"]) for r in rows] == [
            ("S1.PR1.PC1", 20, "Very High"),
            ("S1.PR1.PC2", 9, "Low"),
        ]
        assert rows[0]["control_count"] == 1
        assert rows[0]["control_guidance"]["control_types"] == ["Prv", "RM", "Crr"]

    def test_risk_matrix_places_cause(self, store, register):
        body = store.risk_matrix()
        assert body["analysed"] == 1
        cell = body["matrix"][3][4]
        assert (cell["likelihood"], cell["impact"], cell["risk_score"]) == ("High", "Very High", 20)
        assert [c["code"] for c in cell["causes"]] == ["S1.PR1.PC1"]
        assert sum(len(c["causes"]) for row in body["matrix"] for c in row) == 1


class TestRegisterWalkThrough:
    def test_goal_to_control_and_back(self, store):
        goal = store.add_goal({"name": "Reliable water supply"})
        pr1 = store.add_potential_risk({"description": "Pipe bursts"}, goal["id"])
        pr2 = store.add_potential_risk({"description": "Pump failure"}, goal["id"])
        assert (goal["code"], pr1["code"], pr2["code"]) == ("S1", "S1.PR1", "S1.PR2")

        cause = store.add_risk_cause(
            {"description": "Ageing network", "likelihood": "High", "impact": "Very High"},
            pr1["id"],
        )
        assert cause["code"] == "S1.PR1.PC1"
        assert (cause["risk_score"], cause["risk_level"]) == (20, "Very High")

        control = store.add_control_measure(
            {"control_type": "Prv", "description": "Replacement plan"}, cause["id"],
        )
        assert control["code"] == "S1.PR1.PC1.Prv.1"

        store.delete_potential_risk(pr1["id"])
        assert [p["code"] for p in store.potential_risks] == ["S1.PR2"]
        assert store.risk_causes == [] and store.control_measures == []

        reloaded = RiskRegisterStore()
        reloaded.trigger_initial_data_fetch(USER_ID, PERIOD)
        assert [p["code"] for p in reloaded.potential_risks] == ["S1.PR2"]
        assert reloaded.risk_causes == []
