from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

import docker
from docker.errors import DockerException, NotFound

from .api_models import validate_service_name
from .errors import InfrastructureError
from .settings import settings


class ServiceStatus(str, Enum):
    ABSENT = "Absent"
    STOPPED = "Stopped"
    STARTED = "Started"


class ServiceController(ABC):
    """Query and mutate the run state of a named OS-level service.

    Callers check ``query`` before calling ``start``/``stop``; neither is a
    silent no-op when the service is already in the target state.
    """

    @abstractmethod
    def query(self, name: str) -> ServiceStatus: ...

    @abstractmethod
    def stop(self, name: str) -> None: ...

    @abstractmethod
    def start(self, name: str) -> None: ...

    @abstractmethod
    def register(self, name: str, install_directory: str, service_port: int) -> None:
        """Make ``name`` known to the service manager, launching the installed agent."""

    def _require_exists(self, name: str) -> ServiceStatus:
        status = self.query(name)
        if status is ServiceStatus.ABSENT:
            raise InfrastructureError(f"Service '{name}' does not exist.")
        return status


class SystemdController(ServiceController):
    """systemd units driven through ``systemctl``."""

    def __init__(
        self,
        unit_dir: str | None = None,
        user: bool | None = None,
        timeout_s: int | None = None,
    ):
        self.unit_dir = Path(unit_dir or settings.systemd_unit_dir).expanduser()
        self.user = settings.systemd_user if user is None else user
        self.timeout_s = timeout_s or settings.service_timeout_s

    @staticmethod
    def unit_name(name: str) -> str:
        return name if name.endswith(".service") else f"{name}.service"

    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = ["systemctl"]
        if self.user:
            cmd.append("--user")
        cmd.extend(args)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=self.timeout_s)
        except FileNotFoundError as e:
            raise InfrastructureError("systemctl not found; is systemd available on this host?") from e
        except subprocess.TimeoutExpired as e:
            raise InfrastructureError(f"'{' '.join(cmd)}' did not finish within {self.timeout_s}s") from e
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise InfrastructureError(f"'{' '.join(cmd)}' failed ({result.returncode}): {detail}")
        return result

    def query(self, name: str) -> ServiceStatus:
        validate_service_name(name)
        unit = self.unit_name(name)
        load = self._systemctl("show", unit, "--property=LoadState", "--value").stdout.strip()
        if load in {"", "not-found"}:
            return ServiceStatus.ABSENT
        active = self._systemctl("is-active", unit, check=False)
        return ServiceStatus.STARTED if active.returncode == 0 else ServiceStatus.STOPPED

    def stop(self, name: str) -> None:
        self._require_exists(name)
        unit = self.unit_name(name)
        timed_out = False
        try:
            self._systemctl("stop", unit, check=False)
        except InfrastructureError as e:
            if not isinstance(e.__cause__, subprocess.TimeoutExpired):
                raise
            timed_out = True
        # A hung stop leaves the unit "deactivating", which is-active does not report as running.
        if timed_out or self.query(name) is ServiceStatus.STARTED:
            self._systemctl("kill", "--signal=SIGKILL", unit, check=False)
            if self.query(name) is ServiceStatus.STARTED:
                raise InfrastructureError(f"Service '{name}' is still running after SIGKILL.")

    def start(self, name: str) -> None:
        self._require_exists(name)
        self._systemctl("start", self.unit_name(name))

    def _unit_content(self, name: str, install_directory: str, service_port: int) -> str:
        script = Path(install_directory) / settings.marker_relpath
        return f"""[Unit]
Description=Agent {name} (port {service_port})
After=network.target

[Service]
Type=simple
ExecStart={script} run
ExecStop={script} stop
WorkingDirectory={install_directory}
Restart=on-failure
RestartSec=10

[Install]
WantedBy=default.target
"""

    def register(self, name: str, install_directory: str, service_port: int) -> None:
        validate_service_name(name)
        unit_path = self.unit_dir / self.unit_name(name)
        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
            unit_path.write_text(self._unit_content(name, install_directory, service_port), encoding="utf-8")
        except OSError as e:
            raise InfrastructureError(f"Cannot write unit file {unit_path}: {e}") from e
        self._systemctl("daemon-reload")
        self._systemctl("enable", self.unit_name(name))


class DockerController(ServiceController):
    """Agents run as containers named after the service."""

    def __init__(self, image: str | None = None, mount: str | None = None, timeout_s: int | None = None):
        self.image = image or settings.docker_image
        self.mount = mount or settings.docker_mount
        self.timeout_s = timeout_s or settings.service_timeout_s

    def _client(self) -> docker.DockerClient:
        try:
            c = docker.from_env(timeout=self.timeout_s)
            c.ping()
            return c
        except DockerException as e:
            raise InfrastructureError("Docker is not available. Start the docker daemon and try again.") from e

    def _get(self, name: str):
        validate_service_name(name)
        try:
            cont = self._client().containers.get(name)
            cont.reload()
            return cont
        except NotFound:
            return None
        except DockerException as e:
            raise InfrastructureError(f"Cannot inspect container '{name}': {e}") from e

    def query(self, name: str) -> ServiceStatus:
        cont = self._get(name)
        if cont is None:
            return ServiceStatus.ABSENT
        return ServiceStatus.STARTED if cont.status == "running" else ServiceStatus.STOPPED

    def stop(self, name: str) -> None:
        cont = self._get(name)
        if cont is None:
            raise InfrastructureError(f"Service '{name}' does not exist.")
        try:
            # Docker sends SIGKILL once the timeout expires.
            cont.stop(timeout=self.timeout_s)
        except DockerException as e:
            raise InfrastructureError(f"Failed to stop container '{name}': {e}") from e

    def start(self, name: str) -> None:
        cont = self._get(name)
        if cont is None:
            raise InfrastructureError(f"Service '{name}' does not exist.")
        try:
            cont.start()
        except DockerException as e:
            raise InfrastructureError(f"Failed to start container '{name}': {e}") from e

    def register(self, name: str, install_directory: str, service_port: int) -> None:
        validate_service_name(name)
        script = f"{self.mount}/{settings.marker_relpath}"
        try:
            self._client().containers.create(
                self.image,
                command=[script, "run"],
                name=name,
                working_dir=self.mount,
                volumes={str(Path(install_directory).resolve()): {"bind": self.mount, "mode": "rw"}},
                ports={f"{int(service_port)}/tcp": int(service_port)},
                labels={"acr.agent": name},
                # Run state is owned by the reconciler, not by Docker.
                restart_policy={"Name": "no"},
            )
        except DockerException as e:
            raise InfrastructureError(f"Failed to create container '{name}' from {self.image}: {e}") from e


_BACKENDS: dict[str, type[ServiceController]] = {
    "systemd": SystemdController,
    "docker": DockerController,
}


def get_controller(backend: str | None = None) -> ServiceController:
    backend = backend or settings.service_backend
    cls = _BACKENDS.get(backend)
    if cls is None:
        raise ValueError(f"Unsupported service backend: {backend!r} (supported: {list(_BACKENDS)})")
    return cls()
