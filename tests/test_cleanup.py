from unittest.mock import MagicMock

import pytest

from conftest import not_found, server_error
from volume_fstype import cleanup


def named(*names):
    response = MagicMock()
    items = []
    for name in names:
        item = MagicMock()
        item.metadata.name = name
        items.append(item)
    response.items = items
    return response


@pytest.fixture
def apis():
    core_v1 = MagicMock()
    storage_v1 = MagicMock()
    core_v1.list_namespaced_pod.return_value = named("fstype-pod-1", "unrelated-pod")
    core_v1.list_namespaced_persistent_volume_claim.return_value = named("fstype-pvc-1", "data")
    storage_v1.list_storage_class.return_value = named("fstype-sc-1", "standard")
    return core_v1, storage_v1


def test_only_prefixed_resources_are_deleted(apis):
    core_v1, storage_v1 = apis

    assert cleanup.cleanup_test_resources(core_v1, storage_v1, namespaces=["ns"], wait_seconds=0)

    core_v1.delete_namespaced_pod.assert_called_once()
    assert core_v1.delete_namespaced_pod.call_args.kwargs["name"] == "fstype-pod-1"
    assert core_v1.delete_namespaced_persistent_volume_claim.call_args.kwargs["name"] == "fstype-pvc-1"
    assert storage_v1.delete_storage_class.call_args.kwargs["name"] == "fstype-sc-1"


def test_already_deleted_counts_as_success(apis):
    core_v1, storage_v1 = apis
    core_v1.delete_namespaced_pod.side_effect = not_found()

    assert cleanup.cleanup_test_resources(core_v1, storage_v1, namespaces=["ns"], wait_seconds=0)


def test_failed_deletion_is_reported(apis):
    core_v1, storage_v1 = apis
    storage_v1.delete_storage_class.side_effect = server_error()

    assert not cleanup.cleanup_test_resources(core_v1, storage_v1, namespaces=["ns"], wait_seconds=0)


def test_verify_resources_deleted(apis):
    core_v1, storage_v1 = apis
    core_v1.list_namespaced_pod.return_value = named()
    core_v1.list_namespaced_persistent_volume_claim.return_value = named("data")
    storage_v1.list_storage_class.return_value = named("standard")

    assert cleanup.verify_resources_deleted(core_v1, storage_v1, namespaces=["ns"], timeout=5, poll_interval=0)


def test_verify_times_out_with_leftovers(apis):
    core_v1, storage_v1 = apis

    assert not cleanup.verify_resources_deleted(core_v1, storage_v1, namespaces=["ns"], timeout=0)
