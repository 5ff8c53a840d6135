from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .api_models import ActualStateOut, DesiredState, Presence, RunState
from .errors import InfrastructureError, ValidationError
from .service_ops import ServiceController, ServiceStatus
from .settings import settings


@dataclass(frozen=True)
class ActualState:
    """Point-in-time snapshot of one agent. Never persisted."""

    presence: Presence
    run_state: RunState
    marker_present: bool
    service_status: ServiceStatus

    def to_out(self, name: str) -> ActualStateOut:
        return ActualStateOut(
            name=name,
            presence=self.presence,
            run_state=self.run_state,
            marker_present=self.marker_present,
            service_status=self.service_status.value,
        )


def marker_path(install_directory: str | Path) -> Path:
    return Path(install_directory) / settings.marker_relpath


class StateReader:
    def __init__(self, controller: ServiceController):
        self.controller = controller

    def read(self, name: str, install_directory: str | None = None) -> ActualState:
        """Observe the agent. A missing install or service is a state, not an error."""
        if not name:
            raise ValidationError("name must be non-empty", phase="read")
        install_directory = install_directory or settings.install_directory

        marker_present = marker_path(install_directory).is_file()
        try:
            status = self.controller.query(name)
        except InfrastructureError as e:
            if e.phase is None:
                e.phase = "read"
            raise

        # The service registry is stronger evidence than the marker file.
        presence = Presence.ABSENT if status is ServiceStatus.ABSENT else Presence.PRESENT
        run_state = RunState.STARTED if status is ServiceStatus.STARTED else RunState.STOPPED
        return ActualState(
            presence=presence,
            run_state=run_state,
            marker_present=marker_present,
            service_status=status,
        )

    def is_compliant(self, desired: DesiredState) -> bool:
        actual = self.read(desired.name, desired.install_directory)
        if actual.presence != desired.presence:
            return False
        if actual.run_state != desired.run_state:
            return False
        return True
