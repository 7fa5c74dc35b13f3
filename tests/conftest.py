"""
Shared pytest fixtures for the RiskWise test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, rollback + recreate tables (autouse)
    - client: Flask test client (function-scoped)
    - headers: register context headers for API calls
    - store: a fresh RiskRegisterStore bound to the test context
    - register: a small pre-built register tree (goal, risk, cause, control)
"""

import pytest

from riskwise import create_app
from riskwise.models import db as _db
from riskwise.services.app_store import RiskRegisterStore

USER_ID = "user-1"
PERIOD = "2025"
OTHER_USER_ID = "user-2"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def headers():
    return {"X-User-Id": USER_ID, "X-Period": PERIOD}


# ── Store fixtures ───────────────────────────────────────────────────────


@pytest.fixture()
def store():
    """Each test gets its own store instance; nothing is shared."""
    return RiskRegisterStore().init(USER_ID, PERIOD)


@pytest.fixture()
def register(store):
    """Goal S1 with one potential risk, one analysed cause and one control."""
    goal = store.add_goal({"name": "Improve public service quality"})
    pr = store.add_potential_risk(
        {"description": "Service targets missed", "category": "Operational"}, goal["id"],
    )
    rc = store.add_risk_cause(
        {
            "description": "Insufficient trained staff",
            "source": "Internal",
            "key_risk_indicator": "Vacant positions",
            "risk_tolerance": "3",
            "likelihood": "High",
            "impact": "Very High",
        },
        pr["id"],
    )
    cm = store.add_control_measure(
        {
            "control_type": "Prv",
            "description": "Quarterly training programme",
            "key_control_indicator": "Staff trained",
            "target": "100",
        },
        rc["id"],
    )
    return {"goal": goal, "potential_risk": pr, "risk_cause": rc, "control_measure": cm}
