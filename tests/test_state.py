import pytest

from acr.api_models import Presence, RunState
from acr.errors import ValidationError
from acr.service_ops import ServiceStatus
from acr.state import StateReader, marker_path


def test_missing_install_and_service_is_a_valid_state(controller, install_dir):
    actual = StateReader(controller).read("Agent1", str(install_dir))

    assert actual.presence is Presence.ABSENT
    assert actual.run_state is RunState.STOPPED
    assert actual.marker_present is False
    assert actual.service_status is ServiceStatus.ABSENT


def test_registered_service_overrides_missing_marker(controller, install_dir):
    controller.services["Agent1"] = ServiceStatus.STOPPED

    actual = StateReader(controller).read("Agent1", str(install_dir))

    assert actual.presence is Presence.PRESENT
    assert actual.marker_present is False


def test_marker_without_service_reads_as_absent(controller, install_dir):
    marker = marker_path(install_dir)
    marker.parent.mkdir(parents=True)
    marker.write_text("#!/bin/sh\n")

    actual = StateReader(controller).read("Agent1", str(install_dir))

    assert actual.presence is Presence.ABSENT
    assert actual.marker_present is True


def test_empty_name_is_rejected(controller):
    with pytest.raises(ValidationError):
        StateReader(controller).read("")


@pytest.mark.parametrize(
    "status,presence,run_state,expected",
    [
        (ServiceStatus.STARTED, Presence.PRESENT, RunState.STARTED, True),
        (ServiceStatus.STOPPED, Presence.PRESENT, RunState.STARTED, False),
        (ServiceStatus.STOPPED, Presence.PRESENT, RunState.STOPPED, True),
        (None, Presence.PRESENT, RunState.STOPPED, False),
        (None, Presence.ABSENT, RunState.STOPPED, True),
        # Contradictory desired state is a mismatch here, not an exception.
        (None, Presence.ABSENT, RunState.STARTED, False),
    ],
)
def test_is_compliant(controller, make_desired, status, presence, run_state, expected):
    if status is not None:
        controller.services["Agent1"] = status
    reader = StateReader(controller)

    assert reader.is_compliant(make_desired(presence=presence, run_state=run_state)) is expected
    assert controller.mutating_calls() == []


def test_compliance_does_not_touch_disk(controller, make_desired, install_dir):
    StateReader(controller).is_compliant(make_desired())

    assert not install_dir.exists()
