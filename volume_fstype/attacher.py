import logging
import time
import uuid

from kubernetes import client

from volume_fstype.errors import AttachError
from volume_fstype.models import Workload

MOUNT_PATH = "/mnt/volume1"
PROBE_COMMAND = (
    "/bin/df -T /mnt/volume1 | /bin/awk 'FNR == 2 {print $2}' > /mnt/volume1/fstype"
    " && while true ; do sleep 2 ; done"
)


class WorkloadAttacher:
    """Creates pods that mount a claim and waits for them to run"""

    def __init__(self, context, metrics_collector=None):
        self.context = context
        self.metrics_collector = metrics_collector
        self.logger = logging.getLogger(__name__)

        pod_config = context.config.get('pod_config', {})
        self.image = pod_config.get('image', 'busybox')
        self.mount_path = pod_config.get('mount_path', MOUNT_PATH)
        self.command = pod_config.get('command', PROBE_COMMAND)
        self.node_name = pod_config.get('node_name')
        self.node_selector = pod_config.get('node_selector')
        self.labels = pod_config.get('labels', {})

        self.pod_start_timeout = context.timeout('pod_start_timeout', 300)
        self.attach_timeout = context.timeout('disk_attach_timeout', 120)

    def build_pod_manifest(self, pod_name, claim_names, command):
        """Build pod manifest mounting each claim under /mnt/volumeN"""
        volumes = []
        mounts = []
        for index, claim_name in enumerate(claim_names, start=1):
            volume_name = f"volume{index}"
            volumes.append({"name": volume_name, "persistentVolumeClaim": {"claimName": claim_name}})
            mount_path = self.mount_path if index == 1 else f"/mnt/{volume_name}"
            mounts.append({"name": volume_name, "mountPath": mount_path})

        labels = {"app": "volume-fstype-test"}
        labels.update(self.labels)

        pod_spec = {
            "containers": [{
                "name": "write-pod",
                "image": self.image,
                "command": ["/bin/sh", "-c"],
                "args": [command],
                "volumeMounts": mounts,
            }],
            "restartPolicy": "OnFailure",
            "volumes": volumes,
        }
        if self.node_name:
            pod_spec["nodeName"] = self.node_name
        if self.node_selector:
            pod_spec["nodeSelector"] = self.node_selector
            self.logger.info(f"Using node selector: {self.node_selector}")

        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": pod_name, "labels": labels},
            "spec": pod_spec,
        }

    def attach_workload(self, claim, command=None):
        """Create a pod using the claim and wait for it to be Running

        Args:
            claim: VolumeClaim to mount
            command: Shell command for the container, defaults to the fstype probe

        Returns:
            Workload with its node assignment

        Raises:
            AttachError: Creation was rejected or the pod never reached Running.
                The error's workload is set whenever the pod exists.
        """
        command = command or self.command
        workload = Workload(
            name=f"fstype-pod-{uuid.uuid4().hex[:8]}",
            namespace=claim.namespace,
            claim_names=[claim.name],
            command=command,
        )
        manifest = self.build_pod_manifest(workload.name, workload.claim_names, command)
        self.logger.info(f"Creating pod {workload.name} using PVC {claim.name}")
        try:
            self.context.core_v1.create_namespaced_pod(namespace=workload.namespace, body=manifest)
        except client.exceptions.ApiException as e:
            raise AttachError(f"Pod {workload.name} rejected: {e.reason}") from e
        except Exception as e:
            # The request may have reached the API server, so teardown still owns the pod
            raise AttachError(f"Error creating pod {workload.name}: {e}", workload=workload) from e

        create_time = time.time()
        try:
            self._wait_for_pod_running(workload)
        except AttachError:
            raise
        except Exception as e:
            raise AttachError(f"Error waiting for pod {workload.name}: {e}", workload=workload) from e
        if self.metrics_collector:
            self.metrics_collector.track_pod_startup_delay(workload.name, create_time, time.time())
        return workload

    def _wait_for_pod_running(self, workload, timeout=None):
        timeout = self.pod_start_timeout if timeout is None else timeout
        start_time = time.time()
        last_phase = None
        self.logger.info(f"Waiting up to {timeout}s for pod {workload.name} to be running")

        while time.time() - start_time < timeout:
            try:
                pod = self.context.core_v1.read_namespaced_pod(name=workload.name, namespace=workload.namespace)
            except client.exceptions.ApiException as e:
                if e.status == 404:
                    raise AttachError(f"Pod {workload.name} disappeared before running", workload=workload) from e
                self.logger.warning(f"Error checking pod status: {e}")
                time.sleep(self.context.poll_interval)
                continue

            if pod.spec.node_name:
                workload.node_name = pod.spec.node_name

            phase = pod.status.phase
            if phase != last_phase:
                self.logger.info(f"Pod {workload.name} phase: {phase} (node: {workload.node_name})")
                last_phase = phase

            if phase == "Running":
                return
            if phase in ("Failed", "Succeeded", "Unknown"):
                raise AttachError(f"Pod {workload.name} ended in phase {phase}", workload=workload)

            time.sleep(self.context.poll_interval)

        raise AttachError(
            f"Pod {workload.name} not running after {timeout}s (last phase: {last_phase})",
            workload=workload,
        )

    def verify_volume_attached(self, workload, volumes, timeout=None):
        """Wait until every volume is attached to the workload's node"""
        timeout = self.attach_timeout if timeout is None else timeout
        if not workload.node_name:
            raise AttachError(f"Pod {workload.name} has no node assignment", workload=workload)

        checker = self.context.attach_checker
        start_time = time.time()
        pending = list(volumes)
        while time.time() - start_time < timeout:
            pending = [v for v in pending if not checker.is_volume_attached(v.volume_path, workload.node_name)]
            if not pending:
                for volume in volumes:
                    volume.node_name = workload.node_name
                    if self.metrics_collector:
                        self.metrics_collector.track_volume_attachment(volume.volume_path, start_time)
                self.logger.info(f"Volumes {[v.name for v in volumes]} attached to node {workload.node_name}")
                return
            time.sleep(self.context.poll_interval)

        raise AttachError(
            f"Volumes {[v.volume_path for v in pending]} not attached to node {workload.node_name} after {timeout}s",
            workload=workload,
        )
