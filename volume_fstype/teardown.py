import logging
import time

from kubernetes import client

from volume_fstype.errors import TeardownError


class TeardownSequencer:
    """Releases a scenario's pod, volume attachment and claim

    Every step is attempted even when an earlier one failed, and deleting
    something that is already gone counts as success so teardown can be
    repeated safely.
    """

    def __init__(self, context, metrics_collector=None):
        self.context = context
        self.metrics_collector = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.pod_delete_timeout = context.timeout('pod_delete_timeout', 300)
        self.detach_timeout = context.timeout('disk_detach_timeout', 300)
        self.pvc_delete_timeout = context.timeout('pvc_delete_timeout', 120)

    def teardown(self, workload, claim, volume_path, node_name, storage_class_name=None):
        """Run the release sequence and return the list of TeardownError"""
        errors = []
        steps = [
            ('delete_pod', workload.name if workload else None, lambda: self.delete_workload(workload)),
            ('detach', volume_path, lambda: self.wait_for_volume_detached(volume_path, node_name)),
            ('delete_pvc', claim.name if claim else None, lambda: self.delete_claim(claim)),
            ('delete_storage_class', storage_class_name, lambda: self.delete_storage_class(storage_class_name)),
        ]
        for step, resource, action in steps:
            if resource is None:
                continue
            try:
                action()
            except Exception as e:
                self.logger.error(f"Teardown step {step} failed for {resource}: {e}")
                errors.append(TeardownError(step, resource, e))

        if errors:
            self.logger.warning(f"Teardown finished with {len(errors)} failures")
        else:
            self.logger.info("Teardown completed successfully")
        return errors

    def delete_workload(self, workload):
        self.logger.info(f"Deleting pod {workload.name}")
        try:
            self.context.core_v1.delete_namespaced_pod(name=workload.name, namespace=workload.namespace)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                self.logger.info(f"Pod {workload.name} already deleted")
                return
            raise
        if not self._wait_for_deleted(
            lambda: self.context.core_v1.read_namespaced_pod(name=workload.name, namespace=workload.namespace),
            f"pod {workload.name}",
            self.pod_delete_timeout,
        ):
            raise TimeoutError(f"Pod {workload.name} still present after {self.pod_delete_timeout}s")

    def wait_for_volume_detached(self, volume_path, node_name, timeout=None):
        """Poll the attach state until the volume leaves the node"""
        if not node_name:
            # The pod was never scheduled, so nothing could have attached the volume
            self.logger.info(f"No node recorded for {volume_path}, skipping detach wait")
            return
        timeout = self.detach_timeout if timeout is None else timeout
        checker = self.context.attach_checker
        start_time = time.time()
        self.logger.info(f"Waiting up to {timeout}s for {volume_path} to detach from node {node_name}")

        while time.time() - start_time < timeout:
            if not checker.is_volume_attached(volume_path, node_name):
                elapsed = time.time() - start_time
                if self.metrics_collector:
                    self.metrics_collector.track_volume_detachment(volume_path, elapsed)
                self.logger.info(f"Volume {volume_path} detached from node {node_name} after {elapsed:.1f}s")
                return
            time.sleep(self.context.poll_interval)

        raise TimeoutError(f"Volume {volume_path} still attached to node {node_name} after {timeout}s")

    def delete_claim(self, claim):
        self.logger.info(f"Deleting PVC {claim.name}")
        try:
            self.context.core_v1.delete_namespaced_persistent_volume_claim(name=claim.name, namespace=claim.namespace)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                self.logger.info(f"PVC {claim.name} already deleted")
                return
            raise
        if not self._wait_for_deleted(
            lambda: self.context.core_v1.read_namespaced_persistent_volume_claim(name=claim.name, namespace=claim.namespace),
            f"PVC {claim.name}",
            self.pvc_delete_timeout,
        ):
            raise TimeoutError(f"PVC {claim.name} still present after {self.pvc_delete_timeout}s")

    def delete_storage_class(self, sc_name):
        try:
            self.context.storage_v1.delete_storage_class(name=sc_name)
            self.logger.info(f"Deleted StorageClass {sc_name}")
        except client.exceptions.ApiException as e:
            if e.status != 404:
                raise

    def _wait_for_deleted(self, read, description, timeout):
        """Return True once `read` raises 404, False on timeout"""
        start_time = time.time()
        self.logger.info(f"Waiting for {description} to be deleted")

        while time.time() - start_time < timeout:
            try:
                read()
            except client.exceptions.ApiException as e:
                if e.status == 404:
                    self.logger.info(f"{description} has been deleted")
                    return True
                self.logger.warning(f"Error checking deletion status of {description}: {e}")
            time.sleep(self.context.poll_interval)

        self.logger.warning(f"Timeout waiting for {description} to be deleted after {timeout}s")
        return False
