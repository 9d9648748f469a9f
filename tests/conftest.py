from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from disposal_hub.auth.security import get_current_user
from disposal_hub.db import Base, get_db
from disposal_hub.main import app
from disposal_hub.models.models import User, WasteItem, WasteTemplate
from disposal_hub.services.schedule_store import ScheduleStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN, which breaks SAVEPOINT; emit it ourselves
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    acid = WasteTemplate(name="Koenigwasser", category="koenigwasser", hazard_level="critical", color="#dc2626", icon="⚠️")
    solvent = WasteTemplate(name="Acetone", category="acetone", hazard_level="high", color="#ef4444", icon="🧪")
    water = WasteTemplate(name="Wasserproben", category="wasserproben", hazard_level="low", color="#0ea5e9", icon="🌊")
    db.add_all([acid, solvent, water])
    db.flush()

    acid_item = WasteItem(name="Aqua regia canister", location="Fume hood 2", template_id=acid.id)
    solvent_item = WasteItem(name="Acetone drum", location="Solvent store", template_id=solvent.id)
    water_item = WasteItem(name="Sample fridge", location="Lab 1", template_id=water.id)
    manager = User(name="Lab Manager", email="lab.manager@example.com", is_active=True)
    tech = User(name="Lab Technician", email="lab.tech@example.com", is_active=True)
    db.add_all([acid_item, solvent_item, water_item, manager, tech])
    db.commit()

    return SimpleNamespace(
        acid_item=acid_item,
        solvent_item=solvent_item,
        water_item=water_item,
        manager=manager,
        tech=tech,
    )


@pytest.fixture
def store(db, seed):
    return ScheduleStore(db, timezone_str="UTC")


@pytest.fixture
def client(db, seed):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: seed.manager
    yield TestClient(app)
    app.dependency_overrides.clear()
