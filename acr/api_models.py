from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .settings import settings

SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,62}$")


def validate_service_name(name: str) -> None:
    if not SERVICE_NAME_RE.match(name or ""):
        raise ValueError(
            "Invalid service name. Use letters, digits and -_. starting with a letter or digit (max 63 chars)."
        )


class Presence(str, Enum):
    PRESENT = "Present"
    ABSENT = "Absent"


class RunState(str, Enum):
    STARTED = "Started"
    STOPPED = "Stopped"


class DesiredState(BaseModel):
    """Target configuration for one agent, supplied per call and never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Managed service / installation identifier")
    presence: Presence = Presence.PRESENT
    run_state: RunState = RunState.STARTED
    bundle_url: str | None = Field(None, description="Installation bundle location (needed when installing)")
    install_directory: str = Field(settings.install_directory, min_length=1)
    service_port: int = Field(settings.service_port, ge=1, le=65535, description="Agent's own listener port")
    controller_host: str = Field(settings.controller_host, min_length=1)
    controller_port: int = Field(settings.controller_port, ge=1, le=65535)

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        validate_service_name(v)
        return v


class ActualStateOut(BaseModel):
    name: str
    presence: Presence
    run_state: RunState
    marker_present: bool
    service_status: str


class ApplyResult(BaseModel):
    name: str
    actions: list[str]
    compliant: bool


class ComplianceResult(BaseModel):
    name: str
    compliant: bool
