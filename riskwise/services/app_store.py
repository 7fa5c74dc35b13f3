"""
Coordinating store for one (user_id, period) risk register.

RiskRegisterStore keeps an in-memory copy of the register as ``to_dict``
payloads (with derived ``code`` fields) and exposes cache-consistent
actions on top of the entity services:

    store = RiskRegisterStore()
    store.trigger_initial_data_fetch("u-1", "2025")
    goal = store.add_goal({"name": "Improve service quality"})
    pr = store.add_potential_risk({"description": "Staff turnover"}, goal["id"])

Every mutation goes service → commit → cache. A failed mutation rolls the
session back, records an error notice and re-raises; the cache is only
touched after a successful commit.

Loading of goals → potential risks → risk causes → control measures is a
FetchPipeline (see fetch_pipeline.py). A failing stage empties its own
collection and every downstream one, clears their loading flags and the
``data_fetched_for_period`` marker, then re-raises.

The store uses ``db.session`` and therefore needs an application context.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from riskwise.core.exceptions import NotFoundError, StoreIOError, ValidationError
from riskwise.models.codes import code_of, natural_key
from riskwise.services import (
    control_measure_service,
    goal_service,
    monitoring_service,
    potential_risk_service,
    risk_cause_service,
    risk_exposure_service,
)
from riskwise.services.bulk_results import BulkResult
from riskwise.services.code_generator import (
    next_control_measure_sequence,
    next_goal_sequence,
    next_potential_risk_sequence,
    next_risk_cause_sequence,
)
from riskwise.services.control_measure_service import control_sort_key
from riskwise.services.fetch_pipeline import FetchPipeline, FetchStage
from riskwise.services.helpers.scoped_queries import require_context
from riskwise.services.risk_scoring import (
    IMPACT_LEVELS,
    LIKELIHOOD_LEVELS,
    control_guidance,
    ordinal_of,
    risk_level,
)
from riskwise.utils.helpers import commit_or_raise, rollback_quietly

logger = logging.getLogger(__name__)

COLLECTIONS = (
    "goals",
    "potential_risks",
    "risk_causes",
    "control_measures",
    "monitoring_sessions",
    "risk_exposures",
)

# Item-level failures a batch records instead of aborting.
_ITEM_ERRORS = (ValidationError, NotFoundError, StoreIOError)


def _session_sort_key(session):
    return (session.get("end_date") or "", session.get("created_at") or "")


class RiskRegisterStore:
    """In-memory register for one context, kept consistent with the database."""

    def __init__(self):
        self.reset()

    # ── Context ─────────────────────────────────────────────────────────

    def reset(self):
        """Forget the context and every cached record, flag and notice."""
        self.user_id = None
        self.period = None
        self.collections = {name: [] for name in COLLECTIONS}
        self.loading = {name: False for name in COLLECTIONS}
        self.data_fetched_for_period = None
        self.current_monitoring_session = None
        self.error_notices = []

    def init(self, user_id, period):
        """Bind the store to (user_id, period); switching context resets it."""
        require_context(user_id, period)
        if (user_id, period) != (self.user_id, self.period):
            if self.user_id is not None:
                logger.info("Store context switch %s/%s -> %s/%s",
                            self.user_id, self.period, user_id, period)
            self.reset()
            self.user_id = user_id
            self.period = period
        return self

    @property
    def context(self):
        return self.user_id, self.period

    def ensure_context(self):
        if self.user_id is None or self.period is None:
            raise ValidationError("Store is not initialised; call init(user_id, period) first",
                                  details={"user_id": "required", "period": "required"})
        return self.user_id, self.period

    @property
    def goals(self):
        return self.collections["goals"]

    @property
    def potential_risks(self):
        return self.collections["potential_risks"]

    @property
    def risk_causes(self):
        return self.collections["risk_causes"]

    @property
    def control_measures(self):
        return self.collections["control_measures"]

    @property
    def monitoring_sessions(self):
        return self.collections["monitoring_sessions"]

    @property
    def risk_exposures(self):
        return self.collections["risk_exposures"]

    # ── Notices ─────────────────────────────────────────────────────────

    def _notice(self, scope, exc):
        notice = {
            "scope": scope,
            "message": str(exc) or exc.__class__.__name__,
            "error_type": exc.__class__.__name__,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        self.error_notices.append(notice)
        return notice

    def dismiss_notices(self):
        self.error_notices = []

    @contextmanager
    def _mutation(self, action):
        """Roll back, record a notice and re-raise on any failure."""
        try:
            yield
        except Exception as exc:
            rollback_quietly()
            logger.warning("Store action failed: %s (%s)", action, exc,
                           extra={"user_id": self.user_id, "period": self.period})
            self._notice(action, exc)
            raise

    # ── Cache helpers ───────────────────────────────────────────────────

    def _cached(self, collection, record_id):
        if not record_id:
            return None
        for item in self.collections[collection]:
            if (item["id"] == record_id and item.get("user_id") == self.user_id
                    and item.get("period") == self.period):
                return item
        return None

    def _sort(self, collection):
        items = self.collections[collection]
        if collection == "goals":
            items.sort(key=lambda g: (g["sequence_number"], g.get("created_at") or ""))
        elif collection == "control_measures":
            items.sort(key=lambda c: (natural_key((c.get("code") or "").rsplit(".", 2)[0]),
                                      c["risk_cause_id"], control_sort_key(c)))
        elif collection in ("potential_risks", "risk_causes"):
            items.sort(key=lambda r: (natural_key(r.get("code") or ""), r["sequence_number"]))
        elif collection == "monitoring_sessions":
            items.sort(key=_session_sort_key, reverse=True)
        elif collection == "risk_exposures":
            items.sort(key=lambda e: e["risk_cause_id"])

    def _put(self, collection, item):
        items = self.collections[collection]
        for idx, existing in enumerate(items):
            if existing["id"] == item["id"]:
                items[idx] = item
                break
        else:
            items.append(item)
        self._sort(collection)
        return item

    def _drop(self, collection, predicate):
        before = len(self.collections[collection])
        self.collections[collection] = [i for i in self.collections[collection] if not predicate(i)]
        return before - len(self.collections[collection])

    def _decorate(self, collection, item):
        """Attach the derived display code using cached (or loaded) ancestors."""
        if collection == "potential_risks":
            goal = self.get_goal_by_id(item["goal_id"])
            item["code"] = code_of(item, (goal,)) if goal else None
        elif collection == "risk_causes":
            pr = self.get_potential_risk_by_id(item["potential_risk_id"])
            goal = self.get_goal_by_id(item["goal_id"]) if pr else None
            item["code"] = code_of(item, (goal, pr)) if pr and goal else None
        elif collection == "control_measures":
            rc = self.get_risk_cause_by_id(item["risk_cause_id"])
            pr = self.get_potential_risk_by_id(item["potential_risk_id"]) if rc else None
            goal = self.get_goal_by_id(item["goal_id"]) if pr else None
            item["code"] = code_of(item, (goal, pr, rc)) if rc and pr and goal else None
        return item

    # ── Fetch pipeline ──────────────────────────────────────────────────

    def _load_goals(self):
        user_id, period = self.context
        self.collections["goals"] = [g.to_dict() for g in goal_service.list_goals(user_id, period)]
        self._sort("goals")
        self.loading["goals"] = False

    def _load_potential_risks(self):
        user_id, period = self.context
        loaded = []
        for goal in self.collections["goals"]:
            rows = potential_risk_service.list_potential_risks_by_goal(goal["id"], user_id, period)
            for row in rows:
                item = row.to_dict()
                item["code"] = code_of(item, (goal,))
                loaded.append(item)
        self.collections["potential_risks"] = loaded
        self._sort("potential_risks")
        self.loading["potential_risks"] = False

    def _load_risk_causes(self):
        user_id, period = self.context
        goals = {g["id"]: g for g in self.collections["goals"]}
        loaded = []
        for pr in self.collections["potential_risks"]:
            rows = risk_cause_service.list_risk_causes_by_potential_risk(pr["id"], user_id, period)
            for row in rows:
                item = row.to_dict()
                item["code"] = code_of(item, (goals[pr["goal_id"]], pr))
                loaded.append(item)
        self.collections["risk_causes"] = loaded
        self._sort("risk_causes")
        self.loading["risk_causes"] = False

    def _load_control_measures(self):
        self.collections["control_measures"] = self._control_measures_for(
            self.collections["risk_causes"]
        )
        self._sort("control_measures")
        self.loading["control_measures"] = False

    def _control_measures_for(self, causes):
        user_id, period = self.context
        goals = {g["id"]: g for g in self.collections["goals"]}
        risks = {p["id"]: p for p in self.collections["potential_risks"]}
        loaded = []
        for rc in causes:
            rows = control_measure_service.list_control_measures_by_risk_cause(
                rc["id"], user_id, period,
            )
            pr = risks.get(rc["potential_risk_id"])
            goal = goals.get(rc["goal_id"])
            for row in rows:
                item = row.to_dict()
                if pr and goal:
                    item["code"] = code_of(item, (goal, pr, rc))
                else:
                    self._decorate("control_measures", item)
                loaded.append(item)
        return loaded

    def _on_stage_failure(self, failed, downstream, exc):
        for name in [failed, *downstream]:
            self.collections[name] = []
            self.loading[name] = False
        self.data_fetched_for_period = None
        self._notice(f"load {failed.replace('_', ' ')}", exc)

    def _pipeline(self):
        return FetchPipeline(
            [
                FetchStage("goals", self._load_goals),
                FetchStage("potential_risks", self._load_potential_risks, ("goals",)),
                FetchStage("risk_causes", self._load_risk_causes, ("potential_risks",)),
                FetchStage("control_measures", self._load_control_measures, ("risk_causes",)),
            ],
            on_failure=self._on_stage_failure,
        )

    def fetch_goals(self, start_at=None):
        """Load the register tree; ``start_at`` reloads from that stage down."""
        self.ensure_context()
        pipeline = self._pipeline()
        begin = pipeline.names.index(start_at) if start_at else 0
        for name in pipeline.names[begin:]:
            self.loading[name] = True
        pipeline.run(start_at=start_at)
        self.data_fetched_for_period = self.context
        logger.info("Register loaded: %d goals, %d risks, %d causes, %d controls",
                    len(self.goals), len(self.potential_risks),
                    len(self.risk_causes), len(self.control_measures),
                    extra={"user_id": self.user_id, "period": self.period})
        return self.goals

    def fetch_potential_risks(self):
        return self.fetch_goals(start_at="potential_risks")

    def fetch_risk_causes(self):
        return self.fetch_goals(start_at="risk_causes")

    def fetch_control_measures(self, risk_cause_id=None):
        """Reload controls globally, or only those of one risk cause."""
        user_id, period = self.ensure_context()
        if risk_cause_id is None:
            self.loading["control_measures"] = True
            try:
                rows = control_measure_service.list_control_measures(user_id, period)
                fresh = [self._decorate("control_measures", r.to_dict()) for r in rows]
            except Exception as exc:
                self.collections["control_measures"] = []
                self.loading["control_measures"] = False
                self.data_fetched_for_period = None
                self._notice("load control measures", exc)
                raise
            self.collections["control_measures"] = fresh
            self._sort("control_measures")
            self.loading["control_measures"] = False
            return self.control_measures

        cause = self.get_risk_cause_by_id(risk_cause_id)
        if cause is None:
            raise NotFoundError("RiskCause", risk_cause_id)
        try:
            fresh = self._control_measures_for([cause])
        except Exception as exc:
            self._notice(f"load control measures for risk cause {risk_cause_id}", exc)
            raise
        self._drop("control_measures", lambda c: c["risk_cause_id"] == risk_cause_id)
        self.collections["control_measures"].extend(fresh)
        self._sort("control_measures")
        return fresh

    def trigger_initial_data_fetch(self, user_id, period, force=False):
        """Load the register once per context. Returns True when a fetch ran."""
        self.init(user_id, period)
        if not force and self.data_fetched_for_period == (user_id, period):
            return False
        self.data_fetched_for_period = None
        try:
            self.fetch_goals()
            self.fetch_monitoring_sessions()
        except Exception:
            self.data_fetched_for_period = None
            raise
        return True

    # ── Goals ───────────────────────────────────────────────────────────

    def get_goal_by_id(self, goal_id):
        user_id, period = self.ensure_context()
        cached = self._cached("goals", goal_id)
        if cached is not None:
            return cached
        goal = goal_service.get_goal_by_id(goal_id, user_id, period)
        return goal.to_dict() if goal else None

    def add_goal(self, data, sequence_number=None):
        user_id, period = self.ensure_context()
        with self._mutation("add goal"):
            seq = sequence_number
            if seq is None:
                seq = next_goal_sequence(user_id, period)
            goal = goal_service.add_goal(data, user_id, period, seq)
            commit_or_raise("add goal")
        return self._put("goals", goal.to_dict())

    def update_goal(self, goal_id, data):
        user_id, period = self.ensure_context()
        with self._mutation(f"update goal {goal_id}"):
            goal = goal_service.update_goal(goal_id, user_id, period, data)
            commit_or_raise(f"update goal {goal_id}")
        return self._put("goals", goal.to_dict())

    def delete_goal(self, goal_id):
        user_id, period = self.ensure_context()
        with self._mutation(f"delete goal {goal_id}"):
            counts = goal_service.delete_goal(goal_id, user_id, period)
            commit_or_raise(f"delete goal {goal_id}")
        cause_ids = {c["id"] for c in self.risk_causes if c["goal_id"] == goal_id}
        self._drop("risk_exposures", lambda e: e["risk_cause_id"] in cause_ids)
        self._drop("control_measures", lambda c: c["goal_id"] == goal_id)
        self._drop("risk_causes", lambda c: c["goal_id"] == goal_id)
        self._drop("potential_risks", lambda p: p["goal_id"] == goal_id)
        self._drop("goals", lambda g: g["id"] == goal_id)
        return counts

    # ── Potential risks ─────────────────────────────────────────────────

    def get_potential_risk_by_id(self, potential_risk_id):
        user_id, period = self.ensure_context()
        cached = self._cached("potential_risks", potential_risk_id)
        if cached is not None:
            return cached
        row = potential_risk_service.get_potential_risk_by_id(potential_risk_id, user_id, period)
        return self._decorate("potential_risks", row.to_dict()) if row else None

    def add_potential_risk(self, data, goal_id, sequence_number=None):
        user_id, period = self.ensure_context()
        with self._mutation(f"add potential risk to goal {goal_id}"):
            seq = sequence_number
            if seq is None:
                seq = next_potential_risk_sequence(goal_id, user_id, period)
            row = potential_risk_service.add_potential_risk(data, goal_id, user_id, period, seq)
            commit_or_raise(f"add potential risk to goal {goal_id}")
        return self._put("potential_risks", self._decorate("potential_risks", row.to_dict()))

    def update_potential_risk(self, potential_risk_id, data):
        user_id, period = self.ensure_context()
        with self._mutation(f"update potential risk {potential_risk_id}"):
            row = potential_risk_service.update_potential_risk(potential_risk_id, user_id, period, data)
            commit_or_raise(f"update potential risk {potential_risk_id}")
        return self._put("potential_risks", self._decorate("potential_risks", row.to_dict()))

    def delete_potential_risk(self, potential_risk_id):
        user_id, period = self.ensure_context()
        with self._mutation(f"delete potential risk {potential_risk_id}"):
            counts = potential_risk_service.delete_potential_risk(potential_risk_id, user_id, period)
            commit_or_raise(f"delete potential risk {potential_risk_id}")
        self._forget_potential_risks({potential_risk_id})
        return counts

    def _forget_potential_risks(self, ids):
        cause_ids = {c["id"] for c in self.risk_causes if c["potential_risk_id"] in ids}
        self._forget_risk_causes(cause_ids)
        self._drop("potential_risks", lambda p: p["id"] in ids)

    def bulk_delete_potential_risks(self, potential_risk_ids):
        """Delete each potential risk in its own transaction; never aborts midway."""
        self.ensure_context()
        result = BulkResult("delete potential risks")
        for pr_id in potential_risk_ids:
            try:
                counts = self.delete_potential_risk(pr_id)
            except _ITEM_ERRORS as exc:
                result.failed(pr_id, exc)
            else:
                result.succeeded(pr_id, counts)
        return result

    def import_potential_risk_suggestions(self, goal_id, suggestions=None, provider=None,
                                          context="", count=5):
        """Add AI-suggested potential risks under a goal in one pass.

        ``suggestions`` is a list of {"description", "category"} dicts; when
        omitted, ``provider(context, count)`` is called to obtain them.
        Sequence numbers are computed once and incremented locally.
        """
        user_id, period = self.ensure_context()
        if suggestions is None:
            if provider is None:
                raise ValidationError("Either suggestions or a provider is required")
            suggestions = provider(context, count) or []
        result = BulkResult(f"import potential risk suggestions for goal {goal_id}")
        if not suggestions:
            return result
        seq = next_potential_risk_sequence(goal_id, user_id, period)
        for idx, item in enumerate(suggestions):
            data = {"description": item.get("description"), "category": item.get("category")}
            try:
                created = self.add_potential_risk(data, goal_id, sequence_number=seq)
            except _ITEM_ERRORS as exc:
                result.failed(idx, exc)
            else:
                result.succeeded(created["id"], created)
                seq += 1
        return result

    # ── Risk causes ─────────────────────────────────────────────────────

    def get_risk_cause_by_id(self, risk_cause_id):
        user_id, period = self.ensure_context()
        cached = self._cached("risk_causes", risk_cause_id)
        if cached is not None:
            return cached
        row = risk_cause_service.get_risk_cause_by_id(risk_cause_id, user_id, period)
        return self._decorate("risk_causes", row.to_dict()) if row else None

    def add_risk_cause(self, data, potential_risk_id, sequence_number=None):
        user_id, period = self.ensure_context()
        parent = self.get_potential_risk_by_id(potential_risk_id)
        if parent is None:
            exc = NotFoundError("PotentialRisk", potential_risk_id)
            self._notice(f"add risk cause to potential risk {potential_risk_id}", exc)
            raise exc
        with self._mutation(f"add risk cause to potential risk {potential_risk_id}"):
            seq = sequence_number
            if seq is None:
                seq = next_risk_cause_sequence(potential_risk_id, user_id, period)
            row = risk_cause_service.add_risk_cause(
                data, potential_risk_id, parent["goal_id"], user_id, period, seq,
            )
            commit_or_raise(f"add risk cause to potential risk {potential_risk_id}")
        return self._put("risk_causes", self._decorate("risk_causes", row.to_dict()))

    def update_risk_cause(self, risk_cause_id, data):
        user_id, period = self.ensure_context()
        with self._mutation(f"update risk cause {risk_cause_id}"):
            row = risk_cause_service.update_risk_cause(risk_cause_id, user_id, period, data)
            commit_or_raise(f"update risk cause {risk_cause_id}")
        return self._put("risk_causes", self._decorate("risk_causes", row.to_dict()))

    def delete_risk_cause(self, risk_cause_id):
        user_id, period = self.ensure_context()
        with self._mutation(f"delete risk cause {risk_cause_id}"):
            counts = risk_cause_service.delete_risk_cause(risk_cause_id, user_id, period)
            commit_or_raise(f"delete risk cause {risk_cause_id}")
        self._forget_risk_causes({risk_cause_id})
        return counts

    def _forget_risk_causes(self, ids):
        self._drop("risk_exposures", lambda e: e["risk_cause_id"] in ids)
        self._drop("control_measures", lambda c: c["risk_cause_id"] in ids)
        self._drop("risk_causes", lambda c: c["id"] in ids)

    def bulk_delete_risk_causes(self, risk_cause_ids):
        self.ensure_context()
        result = BulkResult("delete risk causes")
        for rc_id in risk_cause_ids:
            try:
                counts = self.delete_risk_cause(rc_id)
            except _ITEM_ERRORS as exc:
                result.failed(rc_id, exc)
            else:
                result.succeeded(rc_id, counts)
        return result

    def import_risk_cause_suggestions(self, potential_risk_id, suggestions=None, provider=None,
                                      context="", count=5):
        """Add AI-suggested causes ({"description", "source"}) under a potential risk."""
        user_id, period = self.ensure_context()
        if suggestions is None:
            if provider is None:
                raise ValidationError("Either suggestions or a provider is required")
            suggestions = provider(context, count) or []
        result = BulkResult(f"import risk cause suggestions for potential risk {potential_risk_id}")
        if not suggestions:
            return result
        seq = next_risk_cause_sequence(potential_risk_id, user_id, period)
        for idx, item in enumerate(suggestions):
            data = {"description": item.get("description"), "source": item.get("source")}
            try:
                created = self.add_risk_cause(data, potential_risk_id, sequence_number=seq)
            except _ITEM_ERRORS as exc:
                result.failed(idx, exc)
            else:
                result.succeeded(created["id"], created)
                seq += 1
        return result

    # ── Control measures ────────────────────────────────────────────────

    def get_control_measure_by_id(self, control_measure_id):
        user_id, period = self.ensure_context()
        cached = self._cached("control_measures", control_measure_id)
        if cached is not None:
            return cached
        row = control_measure_service.get_control_measure_by_id(control_measure_id, user_id, period)
        return self._decorate("control_measures", row.to_dict()) if row else None

    def add_control_measure(self, data, risk_cause_id, sequence_number=None):
        user_id, period = self.ensure_context()
        cause = self.get_risk_cause_by_id(risk_cause_id)
        if cause is None:
            exc = NotFoundError("RiskCause", risk_cause_id)
            self._notice(f"add control measure to risk cause {risk_cause_id}", exc)
            raise exc
        with self._mutation(f"add control measure to risk cause {risk_cause_id}"):
            seq = sequence_number
            if seq is None:
                seq = next_control_measure_sequence(
                    risk_cause_id, data.get("control_type"), user_id, period,
                )
            row = control_measure_service.add_control_measure(
                data, risk_cause_id, cause["potential_risk_id"], cause["goal_id"],
                user_id, period, seq,
            )
            commit_or_raise(f"add control measure to risk cause {risk_cause_id}")
        return self._put("control_measures", self._decorate("control_measures", row.to_dict()))

    def update_control_measure(self, control_measure_id, data):
        user_id, period = self.ensure_context()
        with self._mutation(f"update control measure {control_measure_id}"):
            row = control_measure_service.update_control_measure(
                control_measure_id, user_id, period, data,
            )
            commit_or_raise(f"update control measure {control_measure_id}")
        return self._put("control_measures", self._decorate("control_measures", row.to_dict()))

    def delete_control_measure(self, control_measure_id):
        user_id, period = self.ensure_context()
        with self._mutation(f"delete control measure {control_measure_id}"):
            deleted = control_measure_service.delete_control_measure(
                control_measure_id, user_id, period,
            )
            commit_or_raise(f"delete control measure {control_measure_id}")
        self._drop("control_measures", lambda c: c["id"] == control_measure_id)
        return deleted

    def control_measures_for_cause(self, risk_cause_id):
        return [c for c in self.control_measures if c["risk_cause_id"] == risk_cause_id]

    # ── Monitoring sessions ─────────────────────────────────────────────

    def fetch_monitoring_sessions(self):
        user_id, period = self.ensure_context()
        self.loading["monitoring_sessions"] = True
        try:
            rows = monitoring_service.list_monitoring_sessions(user_id, period)
        except Exception as exc:
            self.collections["monitoring_sessions"] = []
            self.data_fetched_for_period = None
            self._notice("load monitoring sessions", exc)
            raise
        finally:
            self.loading["monitoring_sessions"] = False
        self.collections["monitoring_sessions"] = [s.to_dict() for s in rows]
        self._sort("monitoring_sessions")
        return self.monitoring_sessions

    def get_monitoring_session_by_id(self, session_id):
        user_id, period = self.ensure_context()
        cached = self._cached("monitoring_sessions", session_id)
        if cached is not None:
            return cached
        row = monitoring_service.get_monitoring_session_by_id(session_id, user_id, period)
        return row.to_dict() if row else None

    def add_monitoring_session(self, data):
        user_id, period = self.ensure_context()
        with self._mutation("add monitoring session"):
            row = monitoring_service.add_monitoring_session(data, user_id, period)
            commit_or_raise("add monitoring session")
        return self._put("monitoring_sessions", row.to_dict())

    def update_monitoring_session(self, session_id, data):
        user_id, period = self.ensure_context()
        with self._mutation(f"update monitoring session {session_id}"):
            row = monitoring_service.update_monitoring_session(session_id, user_id, period, data)
            commit_or_raise(f"update monitoring session {session_id}")
        item = self._put("monitoring_sessions", row.to_dict())
        if self.current_monitoring_session and self.current_monitoring_session["id"] == session_id:
            self.current_monitoring_session = item
        return item

    def delete_monitoring_session(self, session_id):
        user_id, period = self.ensure_context()
        with self._mutation(f"delete monitoring session {session_id}"):
            purged = monitoring_service.delete_monitoring_session(session_id, user_id, period)
            commit_or_raise(f"delete monitoring session {session_id}")
        self._drop("monitoring_sessions", lambda s: s["id"] == session_id)
        self._drop("risk_exposures", lambda e: e["monitoring_session_id"] == session_id)
        if self.current_monitoring_session and self.current_monitoring_session["id"] == session_id:
            self.current_monitoring_session = None
        return purged

    def fetch_current_monitoring_session(self, session_id):
        """Load one session and its exposures (keyed by the session's own period)."""
        user_id, _ = self.ensure_context()
        session = self.get_monitoring_session_by_id(session_id)
        if session is None:
            self.current_monitoring_session = None
            self.collections["risk_exposures"] = []
            raise NotFoundError("MonitoringSession", session_id)
        self.current_monitoring_session = session
        self.loading["risk_exposures"] = True
        try:
            rows = risk_exposure_service.get_risk_exposures_by_session(
                session_id, user_id, session["period"],
            )
        except Exception as exc:
            self.collections["risk_exposures"] = []
            self._notice(f"load risk exposures for session {session_id}", exc)
            raise
        finally:
            self.loading["risk_exposures"] = False
        self.collections["risk_exposures"] = [e.to_dict() for e in rows]
        self._sort("risk_exposures")
        return session

    def save_risk_exposure(self, data):
        """Upsert one exposure and mirror it in the cache. Returns (dict, created)."""
        self.ensure_context()
        with self._mutation(f"save risk exposure for cause {data.get('risk_cause_id')}"):
            row, created = risk_exposure_service.upsert_risk_exposure(data)
            commit_or_raise("save risk exposure")
        item = row.to_dict()
        current = self.current_monitoring_session
        if current is None or current["id"] == item["monitoring_session_id"]:
            self._put("risk_exposures", item)
        return item, created

    def exposure_for_cause(self, risk_cause_id, session_id=None):
        session_id = session_id or (self.current_monitoring_session or {}).get("id")
        for exposure in self.risk_exposures:
            if exposure["risk_cause_id"] == risk_cause_id and exposure["monitoring_session_id"] == session_id:
                return exposure
        return None

    # ── Analysis views ──────────────────────────────────────────────────

    def risk_priority_list(self):
        """Analysed causes with score/level/guidance, highest score first."""
        self.ensure_context()
        risks = {p["id"]: p for p in self.potential_risks}
        goals = {g["id"]: g for g in self.goals}
        rows = []
        for cause in self.risk_causes:
            value, level = risk_level(cause.get("likelihood"), cause.get("impact"))
            if value is None:
                continue
            pr = risks.get(cause["potential_risk_id"], {})
            goal = goals.get(cause["goal_id"], {})
            rows.append({
                "risk_cause_id": cause["id"],
                "code": cause.get("code"),
                "description": cause["description"],
                "potential_risk_id": cause["potential_risk_id"],
                "potential_risk_description": pr.get("description"),
                "goal_id": cause["goal_id"],
                "goal_name": goal.get("name"),
                "likelihood": cause["likelihood"],
                "impact": cause["impact"],
                "risk_score": value,
                "risk_level": level,
                "control_guidance": control_guidance(level),
                "control_count": len(self.control_measures_for_cause(cause["id"])),
            })
        rows.sort(key=lambda r: natural_key(r["code"] or ""))
        rows.sort(key=lambda r: r["risk_score"], reverse=True)
        return rows

    def risk_matrix(self):
        """5×5 likelihood × impact matrix of analysed causes.

        ``matrix[l][i]`` holds the causes with likelihood ordinal l+1 and
        impact ordinal i+1, plus the cell's score and level.
        """
        self.ensure_context()
        matrix = []
        for likelihood in LIKELIHOOD_LEVELS:
            row = []
            for impact in IMPACT_LEVELS:
                value, level = risk_level(likelihood, impact)
                row.append({"likelihood": likelihood, "impact": impact,
                            "risk_score": value, "risk_level": level, "causes": []})
            matrix.append(row)

        analysed = 0
        for cause in self.risk_causes:
            if not cause.get("likelihood") or not cause.get("impact"):
                continue
            cell = matrix[ordinal_of(cause["likelihood"]) - 1][ordinal_of(cause["impact"]) - 1]
            cell["causes"].append({"id": cause["id"], "code": cause.get("code"),
                                   "description": cause["description"]})
            analysed += 1

        return {
            "user_id": self.user_id,
            "period": self.period,
            "analysed": analysed,
            "matrix": matrix,
            "labels": {"likelihood": list(LIKELIHOOD_LEVELS), "impact": list(IMPACT_LEVELS)},
        }