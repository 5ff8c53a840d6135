from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("ACR_DB_PATH", "acr.db")
    service_backend: str = os.getenv("ACR_SERVICE_BACKEND", "systemd")  # systemd|docker

    # Canonical desired-state defaults (used by every entry point)
    install_directory: str = os.getenv("ACR_INSTALL_DIRECTORY", "/opt/acr-agent")
    service_port: int = _env_int("ACR_SERVICE_PORT", 9090)
    controller_host: str = os.getenv("ACR_CONTROLLER_HOST", "localhost")
    controller_port: int = _env_int("ACR_CONTROLLER_PORT", 8111)

    # Bounded waits; the underlying calls would otherwise block forever.
    download_timeout_s: int = _env_int("ACR_DOWNLOAD_TIMEOUT_S", 300)
    service_timeout_s: int = _env_int("ACR_SERVICE_TIMEOUT_S", 60)

    # Layout of an installed agent
    marker_relpath: str = os.getenv("ACR_MARKER_RELPATH", "bin/agent.sh")
    config_relpath: str = os.getenv("ACR_CONFIG_RELPATH", "conf/buildAgent.properties")
    config_template_relpath: str = os.getenv("ACR_CONFIG_TEMPLATE_RELPATH", "conf/buildAgent.dist.properties")
    bundle_basename: str = os.getenv("ACR_BUNDLE_BASENAME", "agent-bundle")

    # systemd backend
    systemd_unit_dir: str = os.getenv("ACR_SYSTEMD_UNIT_DIR", os.path.expanduser("~/.config/systemd/user"))
    systemd_user: bool = _env_bool("ACR_SYSTEMD_USER", True)

    # docker backend
    docker_image: str = os.getenv("ACR_DOCKER_IMAGE", "eclipse-temurin:17-jre")
    docker_mount: str = os.getenv("ACR_DOCKER_MOUNT", "/opt/agent")

    # API basic auth
    admin_user: str = os.getenv("ACR_ADMIN_USER", "admin")
    admin_pass: str = os.getenv("ACR_ADMIN_PASS", "change-me")


settings = Settings()
