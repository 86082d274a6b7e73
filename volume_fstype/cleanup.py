#!/usr/bin/env python3

import argparse
import logging
import os
import sys
import time
from datetime import datetime

from kubernetes import client, config
from kubernetes.client.rest import ApiException

"""
Volume fstype test cleanup script
Deletes pods, claims and storage classes left behind by interrupted scenario runs
"""

POD_PREFIXES = ["fstype-pod-"]
PVC_PREFIXES = ["fstype-pvc-"]
STORAGE_CLASS_PREFIXES = ["fstype-sc-"]
DEFAULT_NAMESPACES = ["volume-fstype"]

logger = logging.getLogger(__name__)


def setup_logging():
    os.makedirs('logs', exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(f'logs/cleanup_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'),
            logging.StreamHandler()
        ]
    )


def _matches(name, prefixes):
    return any(name.startswith(prefix) for prefix in prefixes)


def delete_resource(core_v1, storage_v1, resource_type, name, namespace=None, force=False):
    """Delete a specific Kubernetes resource, treating 404 as already deleted"""
    try:
        logger.info(f"Deleting {resource_type}/{name}" + (f" in namespace {namespace}" if namespace else ""))

        body = client.V1DeleteOptions(
            grace_period_seconds=0 if force else None,
            propagation_policy="Background" if force else "Foreground"
        )

        if resource_type == "pod":
            core_v1.delete_namespaced_pod(name=name, namespace=namespace, body=body)
        elif resource_type == "pvc":
            core_v1.delete_namespaced_persistent_volume_claim(name=name, namespace=namespace, body=body)
        elif resource_type == "storageclass":
            storage_v1.delete_storage_class(name=name, body=body)
        else:
            raise ValueError(f"Unsupported resource type: {resource_type}")

        return True
    except ApiException as e:
        if e.status == 404:
            logger.warning(f"{resource_type}/{name} already deleted or not found")
            return True
        logger.error(f"Failed to delete {resource_type}/{name}: {e}")
        return False


def find_leftover_resources(core_v1, storage_v1, namespaces):
    """List scenario resources still present, as {'pods': [...], 'pvcs': [...], 'storageclasses': [...]}

    Pods and claims are reported as (namespace, name) tuples, storage classes by name.
    """
    leftovers = {"pods": [], "pvcs": [], "storageclasses": []}
    for namespace in namespaces:
        try:
            pods = core_v1.list_namespaced_pod(namespace=namespace)
            leftovers["pods"].extend(
                (namespace, pod.metadata.name) for pod in pods.items if _matches(pod.metadata.name, POD_PREFIXES)
            )
            pvcs = core_v1.list_namespaced_persistent_volume_claim(namespace=namespace)
            leftovers["pvcs"].extend(
                (namespace, pvc.metadata.name) for pvc in pvcs.items if _matches(pvc.metadata.name, PVC_PREFIXES)
            )
        except ApiException as e:
            logger.error(f"Error listing resources in namespace {namespace}: {e}")

    try:
        storage_classes = storage_v1.list_storage_class()
        leftovers["storageclasses"].extend(
            sc.metadata.name for sc in storage_classes.items if _matches(sc.metadata.name, STORAGE_CLASS_PREFIXES)
        )
    except ApiException as e:
        logger.error(f"Error listing storage classes: {e}")

    return leftovers


def cleanup_test_resources(core_v1, storage_v1, namespaces=None, force=True, wait_seconds=5):
    """Clean up all scenario resources in pod, claim, storage class order

    Returns:
        True when every matching resource was deleted
    """
    namespaces = namespaces or DEFAULT_NAMESPACES
    logger.info(f"Cleaning up resources in namespaces: {namespaces}")
    leftovers = find_leftover_resources(core_v1, storage_v1, namespaces)
    failed = []

    for namespace, name in leftovers["pods"]:
        if not delete_resource(core_v1, storage_v1, "pod", name, namespace, force):
            failed.append(f"pod/{namespace}/{name}")

    if leftovers["pods"] and wait_seconds:
        logger.info(f"Waiting {wait_seconds} seconds for pods to start terminating before deleting PVCs...")
        time.sleep(wait_seconds)

    for namespace, name in leftovers["pvcs"]:
        if not delete_resource(core_v1, storage_v1, "pvc", name, namespace, force):
            failed.append(f"pvc/{namespace}/{name}")

    for name in leftovers["storageclasses"]:
        if not delete_resource(core_v1, storage_v1, "storageclass", name, force=force):
            failed.append(f"storageclass/{name}")

    logger.info("Cleanup Summary:")
    logger.info(
        f"Deleted {len(leftovers['pods'])} pods, {len(leftovers['pvcs'])} PVCs "
        f"and {len(leftovers['storageclasses'])} storage classes"
    )
    if failed:
        logger.warning("Failed deletions:")
        for resource in failed:
            logger.warning(f"  - {resource}")
        return False

    logger.info("All resources deleted successfully")
    return True


def verify_resources_deleted(core_v1, storage_v1, namespaces=None, timeout=60, poll_interval=5):
    """Wait until no scenario resources remain"""
    namespaces = namespaces or DEFAULT_NAMESPACES
    logger.info(f"Verifying resource deletion for up to {timeout} seconds...")

    start_time = time.time()
    remaining = []
    while time.time() - start_time < timeout:
        leftovers = find_leftover_resources(core_v1, storage_v1, namespaces)
        remaining = (
            [f"pod/{ns}/{name}" for ns, name in leftovers["pods"]]
            + [f"pvc/{ns}/{name}" for ns, name in leftovers["pvcs"]]
            + [f"storageclass/{name}" for name in leftovers["storageclasses"]]
        )
        if not remaining:
            logger.info(f"All resources deleted successfully after {time.time() - start_time:.1f} seconds")
            return True

        logger.info(f"Still waiting on {len(remaining)} resources to be deleted...")
        time.sleep(poll_interval)

    logger.error("Timed out waiting for resource deletion. Remaining resources:")
    for resource in remaining:
        logger.error(f"  - {resource}")
    return False


def main(argv=None):
    parser = argparse.ArgumentParser(description="Clean up volume fstype test resources")
    parser.add_argument("--namespaces", "-n", type=str, nargs="+",
                        help="Namespaces to clean up (default: volume-fstype)")
    parser.add_argument("--no-force", dest="force", action="store_false",
                        help="Delete with the default grace period instead of 0")
    parser.add_argument("--no-verify", dest="verify", action="store_false",
                        help="Skip waiting for the resources to disappear")
    parser.add_argument("--verify-timeout", "-t", type=int, default=60,
                        help="Timeout in seconds for verification (default: 60)")
    args = parser.parse_args(argv)

    setup_logging()
    try:
        config.load_kube_config()
    except config.ConfigException as e:
        logger.error(f"Failed to load kubeconfig: {e}")
        return 1

    core_v1 = client.CoreV1Api()
    storage_v1 = client.StorageV1Api()

    logger.info("Starting volume fstype test resource cleanup")
    success = cleanup_test_resources(core_v1, storage_v1, namespaces=args.namespaces, force=args.force)
    if args.verify and success:
        success = verify_resources_deleted(core_v1, storage_v1, namespaces=args.namespaces, timeout=args.verify_timeout)

    logger.info("Cleanup process completed")
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
