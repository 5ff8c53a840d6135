import pytest
from fastapi.testclient import TestClient

import main
from acr.reconciler import Reconciler
from acr.service_ops import ServiceStatus


@pytest.fixture
def client(controller, installer):
    reconciler = Reconciler(controller, installer)
    main.app.dependency_overrides[main.get_reconciler] = lambda: reconciler
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return (main.settings.admin_user, main.settings.admin_pass)


def _desired(install_dir, **overrides):
    payload = {
        "name": "Agent1",
        "bundle_url": "https://downloads.example.com/buildAgent.zip",
        "install_directory": str(install_dir),
        "service_port": 9090,
        "controller_host": "ci.example.com",
        "controller_port": 80,
    }
    payload.update(overrides)
    return payload


def test_requires_basic_auth(client, install_dir):
    r = client.post("/agents/apply", json=_desired(install_dir))
    assert r.status_code == 401

    r = client.post("/agents/apply", json=_desired(install_dir), auth=("admin", "wrong"))
    assert r.status_code == 401


def test_apply_then_state_and_compliance(client, auth, install_dir):
    r = client.post("/agents/compliance", json=_desired(install_dir), auth=auth)
    assert r.status_code == 200
    assert r.json() == {"name": "Agent1", "compliant": False}

    r = client.post("/agents/apply", json=_desired(install_dir), auth=auth)
    assert r.status_code == 200
    assert r.json() == {"name": "Agent1", "actions": ["install", "register", "start"], "compliant": True}

    r = client.get("/agents/Agent1/state", params={"install_directory": str(install_dir)}, auth=auth)
    assert r.status_code == 200
    body = r.json()
    assert body["presence"] == "Present"
    assert body["run_state"] == "Started"
    assert body["marker_present"] is True

    r = client.post("/agents/apply", json=_desired(install_dir), auth=auth)
    assert r.json()["actions"] == []


def test_contradictory_desired_state_is_422(client, auth, install_dir, controller):
    r = client.post("/agents/apply", json=_desired(install_dir, presence="Absent", run_state="Started"), auth=auth)

    assert r.status_code == 422
    assert r.json()["detail"]["phase"] == "validation"
    assert controller.calls == []


def test_removal_is_409(client, auth, install_dir, controller):
    controller.services["Agent1"] = ServiceStatus.STOPPED

    r = client.post("/agents/apply", json=_desired(install_dir, presence="Absent", run_state="Stopped"), auth=auth)

    assert r.status_code == 409
    assert r.json()["detail"]["phase"] == "remove"


def test_infrastructure_failure_is_502(client, auth, install_dir, controller):
    controller.services["Agent1"] = ServiceStatus.STOPPED
    controller.fail_on.add("start")

    r = client.post("/agents/apply", json=_desired(install_dir), auth=auth)

    assert r.status_code == 502
    assert r.json()["detail"]["phase"] == "start"
    assert r.json()["detail"]["error"].startswith("start:")


def test_invalid_name_rejected_by_model(client, auth, install_dir):
    r = client.post("/agents/apply", json=_desired(install_dir, name="bad name/"), auth=auth)
    assert r.status_code == 422


def test_events_show_journal(client, auth, install_dir):
    client.post("/agents/apply", json=_desired(install_dir), auth=auth)

    r = client.get("/events", params={"service": "Agent1", "limit": 5}, auth=auth)
    assert r.status_code == 200
    messages = [e["message"] for e in r.json()]
    assert "Starting service" in messages
    assert all(e["service_name"] == "Agent1" for e in r.json())
