from __future__ import annotations

from enum import Enum

from . import db
from .api_models import DesiredState, Presence, RunState
from .errors import ConvergenceError, UnsupportedOperationError, ValidationError
from .installer import Installer
from .service_ops import ServiceController
from .state import ActualState, StateReader


class Action(str, Enum):
    STOP = "stop"
    REMOVE = "remove"
    INSTALL = "install"
    REGISTER = "register"
    START = "start"


def validate_desired(desired: DesiredState) -> None:
    if desired.presence is Presence.ABSENT and desired.run_state is RunState.STARTED:
        raise ValidationError(
            f"'{desired.name}': presence=Absent cannot be combined with run_state=Started.",
            phase="validation",
        )


def plan(desired: DesiredState, actual: ActualState) -> list[Action]:
    """Ordered actions that move ``actual`` towards ``desired``.

    Drift in an already present install (ports, controller address) is not
    acted on; only presence and run state are converged.
    """
    actions: list[Action] = []
    if desired.run_state is RunState.STOPPED and actual.run_state is RunState.STARTED:
        actions.append(Action.STOP)

    if desired.presence is Presence.ABSENT and actual.presence is Presence.PRESENT:
        actions.append(Action.REMOVE)
    elif desired.presence is Presence.PRESENT and actual.presence is Presence.ABSENT:
        actions.append(Action.INSTALL)
        actions.append(Action.REGISTER)

    if desired.run_state is RunState.STARTED and actual.run_state is RunState.STOPPED:
        actions.append(Action.START)
    return actions


class Reconciler:
    """Converges one agent per call: Read, Plan + Apply, Verify.

    No rollback: a failure leaves whatever already ran in place, and the next
    ``apply`` only repeats the steps that are still needed.
    """

    def __init__(self, controller: ServiceController, installer: Installer | None = None):
        self.controller = controller
        self.installer = installer or Installer()
        self.reader = StateReader(controller)

    def read(self, desired: DesiredState) -> ActualState:
        return self.reader.read(desired.name, desired.install_directory)

    def apply(self, desired: DesiredState) -> list[Action]:
        try:
            validate_desired(desired)
            actual = self.read(desired)
        except ConvergenceError as e:
            db.log_event("ERROR", str(e), service_name=desired.name)
            raise
        actions = plan(desired, actual)

        if not actions:
            db.log_event("INFO", "No changes needed", service_name=desired.name)
            return []

        db.log_event(
            "INFO",
            f"Converging {actual.presence.value}/{actual.run_state.value} -> "
            f"{desired.presence.value}/{desired.run_state.value}: {', '.join(a.value for a in actions)}",
            service_name=desired.name,
        )
        for action in actions:
            try:
                self._run(action, desired)
            except ConvergenceError as e:
                if e.phase is None:
                    e.phase = action.value
                db.log_event("ERROR", str(e), service_name=desired.name)
                raise
        return actions

    def _run(self, action: Action, desired: DesiredState) -> None:
        name = desired.name
        if action is Action.STOP:
            db.log_event("INFO", "Stopping service", service_name=name)
            self.controller.stop(name)
        elif action is Action.REMOVE:
            raise UnsupportedOperationError(
                f"Removing installed agent '{name}' is not supported.", phase="remove"
            )
        elif action is Action.INSTALL:
            db.log_event("INFO", f"Installing into {desired.install_directory}", service_name=name)
            self.installer.install(
                name=name,
                bundle_url=desired.bundle_url,
                install_directory=desired.install_directory,
                service_port=desired.service_port,
                controller_host=desired.controller_host,
                controller_port=desired.controller_port,
            )
        elif action is Action.REGISTER:
            db.log_event("INFO", "Registering service", service_name=name)
            self.controller.register(name, desired.install_directory, desired.service_port)
        elif action is Action.START:
            db.log_event("INFO", "Starting service", service_name=name)
            self.controller.start(name)

    def verify(self, desired: DesiredState) -> bool:
        return self.reader.is_compliant(desired)
