from pathlib import Path
import tempfile

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cfs_warehouse.db import enable_sqlite_foreign_keys, init_db
import cfs_warehouse.main as main


@pytest.fixture()
def client_and_db(monkeypatch):
    db_file = Path(tempfile.mkdtemp()) / "test_cfs.db"
    engine = create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    enable_sqlite_foreign_keys(engine)
    testing_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    monkeypatch.setattr(main, "SessionLocal", testing_session)

    init_db(engine)

    with TestClient(main.app) as client:
        yield client, testing_session
    engine.dispose()


@pytest.fixture()
def client(client_and_db):
    return client_and_db[0]


@pytest.fixture()
def rbs_zone(client):
    resp = client.post("/zones", json={"code": "GE", "name": "General", "type": "RBS"})
    assert resp.status_code == 200
    return resp.json()


@pytest.fixture()
def custom_zone(client):
    resp = client.post("/zones", json={"code": "DG", "name": "Dangerous goods", "type": "CUSTOM"})
    assert resp.status_code == 200
    return resp.json()
