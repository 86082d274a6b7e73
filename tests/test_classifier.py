from unittest.mock import MagicMock

import pytest

from conftest import make_event, server_error
from volume_fstype.classifier import FailureClassifier, expected_mount_failure_message


@pytest.fixture
def classifier(context):
    return FailureClassifier(context)


def events(*items):
    response = MagicMock()
    response.items = list(items)
    return response


def test_expected_message_names_volume():
    assert expected_mount_failure_message("pvc-1234") == (
        'MountVolume.MountDevice failed for volume "pvc-1234" : executable file not found'
    )


def test_confirms_matching_event(context, classifier):
    message = (
        'MountVolume.MountDevice failed for volume "pvc-1234" : executable file not found '
        'in $PATH: "mkfs.ext10"'
    )
    context.core_v1.list_namespaced_event.return_value = events(
        make_event("Successfully assigned pod to node-1", reason="Scheduled"),
        make_event(message),
    )

    assert classifier.confirm_expected_failure("fstype-test", "pvc-1234") is True
    context.core_v1.list_namespaced_event.assert_called_with(namespace="fstype-test")


def test_other_volume_does_not_match(context, classifier):
    context.core_v1.list_namespaced_event.return_value = events(
        make_event(expected_mount_failure_message("pvc-other")),
    )

    assert classifier.confirm_expected_failure("fstype-test", "pvc-1234", timeout=0) is False


def test_event_checked_once_with_zero_timeout(context, classifier):
    context.core_v1.list_namespaced_event.return_value = events(
        make_event(expected_mount_failure_message("pvc-1234")),
    )

    assert classifier.confirm_expected_failure("fstype-test", "pvc-1234", timeout=0) is True


def test_event_appearing_later(context, classifier):
    context.core_v1.list_namespaced_event.side_effect = [
        server_error(),
        events(),
        events(make_event(expected_mount_failure_message("pvc-1234"))),
    ]

    assert classifier.confirm_expected_failure("fstype-test", "pvc-1234") is True


def test_custom_substring(context, classifier):
    context.core_v1.list_namespaced_event.return_value = events(make_event("mkfs.xfs not found"))

    assert classifier.confirm_expected_failure("fstype-test", "pvc-1", substring="mkfs.xfs", timeout=0) is True


def test_find_matching_events(context, classifier):
    context.core_v1.list_namespaced_event.return_value = events(
        make_event("a needle here", name="pod-a"),
        make_event("nothing"),
    )

    matches, scanned = classifier.find_matching_events("fstype-test", "needle")

    assert [m.target_name for m in matches] == ["pod-a"]
    assert scanned == 2
