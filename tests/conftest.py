from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from volume_fstype.context import ClusterContext
from volume_fstype.models import Volume, VolumeClaim, Workload

NAMESPACE = "fstype-test"


@pytest.fixture
def test_config():
    return {
        "test": {"namespace": NAMESPACE},
        "retries": {
            "pvc_bind_timeout": 5,
            "pod_start_timeout": 5,
            "disk_attach_timeout": 5,
            "fstype_lookup_timeout": 5,
            "event_lookup_timeout": 5,
            "pod_delete_timeout": 5,
            "disk_detach_timeout": 5,
            "pvc_delete_timeout": 5,
            "poll_interval": 0,
        },
    }


@pytest.fixture
def context(test_config):
    return ClusterContext(
        core_v1=MagicMock(),
        storage_v1=MagicMock(),
        namespace=NAMESPACE,
        config=test_config,
        attach_checker=MagicMock(),
    )


@pytest.fixture
def claim():
    return VolumeClaim(name="fstype-pvc-abc", namespace=NAMESPACE, size="2Gi", storage_class_name="fstype-sc-abc")


@pytest.fixture
def volume():
    return Volume(name="pvc-1234", volume_path="[datastore1] kubevols/pvc-1234.vmdk")


@pytest.fixture
def workload():
    return Workload(
        name="fstype-pod-abc",
        namespace=NAMESPACE,
        claim_names=["fstype-pvc-abc"],
        command="sleep 3600",
        node_name="node-1",
    )


def not_found():
    return ApiException(status=404, reason="Not Found")


def server_error():
    return ApiException(status=500, reason="Internal Server Error")


def make_pvc(phase, volume_name=None):
    pvc = MagicMock()
    pvc.status.phase = phase
    pvc.spec.volume_name = volume_name
    return pvc


def make_pv(name, vsphere_path=None, csi_handle=None, ebs_volume_id=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(
            vsphere_volume=SimpleNamespace(volume_path=vsphere_path) if vsphere_path else None,
            csi=SimpleNamespace(volume_handle=csi_handle) if csi_handle else None,
            aws_elastic_block_store=SimpleNamespace(volume_id=ebs_volume_id) if ebs_volume_id else None,
            gce_persistent_disk=None,
        ),
    )


def make_pod(phase, node_name=None):
    pod = MagicMock()
    pod.status.phase = phase
    pod.spec.node_name = node_name
    return pod


def make_event(message, name="pvc-1234", kind="Pod", reason="FailedMount"):
    event = MagicMock()
    event.message = message
    event.reason = reason
    event.count = 1
    event.involved_object.name = name
    event.involved_object.kind = kind
    return event
