from unittest.mock import MagicMock

import pytest

from volume_fstype.errors import MismatchError
from volume_fstype.verifier import READ_FSTYPE_COMMAND, MountVerifier


@pytest.fixture
def verifier(context):
    context.exec_in_pod = MagicMock()
    return MountVerifier(context)


def test_matching_fstype(context, verifier, workload):
    context.exec_in_pod.return_value = "ext3\n"

    verifier.verify_fstype(workload, "ext3")

    context.exec_in_pod.assert_called_with(workload.name, READ_FSTYPE_COMMAND, namespace=workload.namespace)


def test_empty_output_and_exec_errors_are_tolerated(context, verifier, workload):
    context.exec_in_pod.side_effect = [RuntimeError("container not ready"), "", "ext4\n"]

    verifier.verify_fstype(workload, "ext4")

    assert context.exec_in_pod.call_count == 3


def test_mismatch_reports_last_output(context, verifier, workload):
    context.exec_in_pod.return_value = "ext4\n"

    with pytest.raises(MismatchError) as excinfo:
        verifier.verify_fstype(workload, "ext3", timeout=0.05)

    assert excinfo.value.expected == "ext3"
    assert excinfo.value.actual == "ext4"


def test_nothing_read_before_deadline(context, verifier, workload):
    with pytest.raises(MismatchError) as excinfo:
        verifier.verify_fstype(workload, "ext3", timeout=0)

    assert excinfo.value.actual is None
    context.exec_in_pod.assert_not_called()


def test_match_is_exact(context, verifier, workload):
    context.exec_in_pod.return_value = "ext3 "

    verifier.verify_fstype(workload, "ext3")

    context.exec_in_pod.return_value = "ext34"
    with pytest.raises(MismatchError):
        verifier.verify_fstype(workload, "ext3", timeout=0.05)
