import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import main


@pytest.fixture
def session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    def get_session_override():
        return session

    main.app.dependency_overrides[main.get_session] = get_session_override
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    def _make(name):
        r = client.post("/users", json={"name": name})
        assert r.status_code == 200, r.text
        return r.json()["id"]
    return _make


@pytest.fixture
def make_group(client):
    def _make(name, user_ids):
        r = client.post("/groups", json={"name": name, "user_ids": user_ids})
        assert r.status_code == 200, r.text
        return r.json()["id"]
    return _make
