from dataclasses import replace
from pathlib import Path

import pytest

from acr import db
from acr.api_models import DesiredState
from acr.errors import InfrastructureError
from acr.service_ops import ServiceController, ServiceStatus
from acr.settings import settings


@pytest.fixture(autouse=True)
def isolated_journal(tmp_path, monkeypatch):
    """Point the event journal at a throwaway sqlite file."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "journal.db")))


class FakeController(ServiceController):
    """In-memory service manager that records every call."""

    def __init__(self, services: dict[str, ServiceStatus] | None = None):
        self.services = dict(services or {})
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def _maybe_fail(self, op: str, name: str) -> None:
        if op in self.fail_on:
            raise InfrastructureError(f"simulated {op} failure for {name}")

    def query(self, name):
        self.calls.append(("query", name))
        self._maybe_fail("query", name)
        return self.services.get(name, ServiceStatus.ABSENT)

    def stop(self, name):
        self.calls.append(("stop", name))
        self._maybe_fail("stop", name)
        if name not in self.services:
            raise InfrastructureError(f"Service '{name}' does not exist.")
        self.services[name] = ServiceStatus.STOPPED

    def start(self, name):
        self.calls.append(("start", name))
        self._maybe_fail("start", name)
        if name not in self.services:
            raise InfrastructureError(f"Service '{name}' does not exist.")
        self.services[name] = ServiceStatus.STARTED

    def register(self, name, install_directory, service_port):
        self.calls.append(("register", name))
        self._maybe_fail("register", name)
        self.services.setdefault(name, ServiceStatus.STOPPED)

    def mutating_calls(self):
        return [c for c in self.calls if c[0] != "query"]


class FakeInstaller:
    """Creates the marker file instead of downloading anything."""

    def __init__(self):
        self.calls: list[dict] = []
        self.error: Exception | None = None

    def install(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        marker = Path(kwargs["install_directory"]) / settings.marker_relpath
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text("#!/bin/sh\n", encoding="utf-8")


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def install_dir(tmp_path):
    return tmp_path / "agent"


@pytest.fixture
def make_desired(install_dir):
    def _make(**overrides):
        fields = dict(
            name="Agent1",
            bundle_url="https://downloads.example.com/buildAgent.zip",
            install_directory=str(install_dir),
            service_port=9090,
            controller_host="ci.example.com",
            controller_port=80,
        )
        fields.update(overrides)
        return DesiredState(**fields)

    return _make
