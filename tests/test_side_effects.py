import pytest
import requests
from sqlalchemy.exc import OperationalError

from dispatch import audit, notify
from dispatch.errors import UnavailableError
from dispatch.models import AuditLog, Unit
from dispatch.realtime.tokens import verify_actor_token
from dispatch.services.uow import unit_of_work
from dispatch.tasks import submit_with_app


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = ""
        self._payload = payload or {}

    def json(self):
        return self._payload


def test_callbacks_run_only_after_commit(db_session):
    calls = []
    with pytest.raises(RuntimeError):
        with unit_of_work() as uow:
            uow.after_commit(calls.append, "rolled back")
            raise RuntimeError("guard failed")
    assert calls == []

    with unit_of_work() as uow:
        uow.after_commit(calls.append, "committed")
        uow.after_commit(lambda: 1 / 0)
        uow.after_commit(calls.append, "after failure")
    assert calls == ["committed", "after failure"]


def test_storage_failure_becomes_unavailable(db_session):
    with pytest.raises(UnavailableError):
        with unit_of_work():
            raise OperationalError("UPDATE", {}, Exception("database is locked"))


def test_audit_can_be_disabled(app, db_session):
    audit.log_action("staff1", "incident.ack", "incident", "INC-2025-000001")
    app.config["AUDIT_ENABLED"] = False
    audit.log_action("staff1", "incident.close", "incident", "INC-2025-000001")

    rows = audit.recent(entity="incident", entity_id="INC-2025-000001")
    assert [r.action for r in rows] == ["incident.ack"]
    assert AuditLog.query.count() == 1


def test_send_push_posts_to_fcm(app, db_session, monkeypatch):
    sent = []

    def fake_post(url, headers=None, data=None, timeout=None):
        sent.append((url, headers, timeout))
        return _Resp(payload={"success": 2})

    monkeypatch.setattr(requests, "post", fake_post)
    assert notify.send_push("t", "b", ["a" * 12]) == {"sent": 0}  # disabled

    app.config.update(PUSH_ENABLED=True, FCM_SERVER_KEY="server-key")
    assert notify.send_push("t", "b", ["a" * 12, "b" * 12]) == {"sent": 2}
    url, headers, timeout = sent[0]
    assert url == notify.FCM_URL
    assert headers["Authorization"] == "key=server-key"
    assert timeout == 5


def test_send_push_swallows_transport_errors(app, db_session, monkeypatch):
    def fake_post(*_args, **_kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(requests, "post", fake_post)
    app.config.update(PUSH_ENABLED=True, FCM_SERVER_KEY="server-key")
    assert notify.send_push("t", "b", ["a" * 12]) == {"sent": 0}


def test_status_change_push_goes_to_active_devices(app, db_session, monkeypatch):
    app.config.update(PUSH_ENABLED=True, FCM_SERVER_KEY="server-key")
    keep = notify.register_device("7", "token-keep-0001", platform="android")
    drop = notify.register_device("7", "token-drop-0001", platform="ios")
    notify.deactivate_device("7", drop)
    assert notify.device_tokens("7") == ["token-keep-0001"]

    submitted = []
    monkeypatch.setattr(notify, "submit_with_app", lambda _app, fn, *args: submitted.append((fn, args)))

    notify.notify_status_change("INC-2025-000001", "7", "DISPATCHED")
    notify.notify_status_change("INC-2025-000001", None, "DISPATCHED")

    ((fn, args),) = submitted
    assert fn is notify.send_push
    assert args[1] == notify.STATUS_MESSAGES["DISPATCHED"]
    assert args[2] == ["token-keep-0001"]
    assert keep != drop


def test_background_task_failure_is_logged_not_raised(app):
    def boom():
        raise RuntimeError("fcm down")

    assert submit_with_app(app, boom).result(timeout=5) is None
    assert submit_with_app(app, lambda: 42).result(timeout=5) == 42


def test_cli_create_unit_and_issue_token(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-unit", "--name", "Ambulance 2", "--type", "ambulance"])
    assert result.exit_code == 0, result.output
    assert "Unit 1 created." in result.output

    result = runner.invoke(args=["issue-token", "sup1", "--role", "supervisor"])
    assert result.exit_code == 0
    with app.app_context():
        assert Unit.query.one().type == "ambulance"
        assert verify_actor_token(result.output.strip())["r"] == "supervisor"
