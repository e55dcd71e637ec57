# tests/conftest.py
import pytest
from sqlalchemy.orm import sessionmaker

from reproute import models  # noqa: F401
from reproute.database import Base, make_engine, make_sessionmaker
from reproute.engine.lifecycle import AllocationLifecycleManager
from reproute.ledger.repository import LedgerAdapter
from reproute.oracle.validation import UNAVAILABLE, OracleResult
from reproute.partners.directory import PartnerDirectory
from reproute.schemas import PartnerInput


class FakeOracle:
    """Stands in for ScoringOracleClient; every call answers with a canned OracleResult."""

    def __init__(self, reputation=None, risk=None, allocation=None):
        down = OracleResult.failure(UNAVAILABLE, "oracle down")
        self.reputation = reputation or down
        self.risk = risk or down
        self.allocation = allocation or down
        self.calls = []

    def analyze_reputation_change(self, stats, event_type, context):
        self.calls.append(("reputation", event_type))
        return self.reputation

    def predict_customer_risk(self, stats):
        self.calls.append(("risk", stats.user_id))
        return self.risk

    def analyze_allocation(self, stats, reputation, order, partners):
        self.calls.append(("allocation", [p.id for p in partners]))
        return self.allocation


@pytest.fixture
def engine(tmp_path):
    # file-backed so worker threads get their own connections
    eng = make_engine(f"sqlite:///{tmp_path / 'reproute.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def broken_sessions(tmp_path):
    # schema never created: every query fails at the driver
    eng = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield sessionmaker(bind=eng)
    eng.dispose()


@pytest.fixture
def ledger(sessions):
    return LedgerAdapter(sessions)


@pytest.fixture
def directory(sessions):
    return PartnerDirectory(sessions)


@pytest.fixture
def lifecycle(sessions, directory):
    return AllocationLifecycleManager(sessions, directory)


@pytest.fixture
def fake_oracle():
    return FakeOracle


@pytest.fixture
def add_partner(directory):
    def _add(partner_id, **overrides):
        data = {"id": partner_id, "name": partner_id.title(), "service_areas": []}
        data.update(overrides)
        return directory.add_partner(PartnerInput(**data))
    return _add


@pytest.fixture
def seed_orders(ledger):
    def _seed(user_id, count, destination="Mumbai, India", value=100.0):
        ids = []
        for i in range(count):
            order_id = f"{user_id}-seed-{i}"
            ledger.create_order(order_id, user_id, value, "electronics", destination)
            ids.append(order_id)
        return ids
    return _seed
