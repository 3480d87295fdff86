import pytest

from dispatch import create_app
from dispatch.config import TestingConfig
from dispatch.extensions import db
from dispatch.realtime.hub import get_hub
from dispatch.realtime.tokens import issue_actor_token
from dispatch.services import unit_service


@pytest.fixture()
def app(tmp_path):
    # Config attributes are read at import time, so point the DB at tmp here.
    class _Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"

    a = create_app(_Config)
    yield a

    with a.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db_session(app):
    with app.app_context():
        yield db.session
        db.session.remove()


@pytest.fixture()
def hub(db_session):
    return get_hub()


@pytest.fixture()
def ops_feed(hub):
    """A staff subscriber joined to the ops room."""
    sub = hub.connect("watcher", "operator")
    assert hub.join_ops(sub) == {"ok": True, "room": "ops"}
    return sub


@pytest.fixture()
def make_unit(db_session):
    def _make(name="Patrol 1", type="patrol", **kwargs):
        return unit_service.create_unit(name, type, **kwargs)["id"]

    return _make


@pytest.fixture()
def auth_headers(app):
    def _headers(actor_ref, role):
        with app.app_context():
            token = issue_actor_token(actor_ref, role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def staff_headers(auth_headers):
    return auth_headers("staff1", "operator")


@pytest.fixture()
def citizen_headers(auth_headers):
    return auth_headers("7", "citizen")
