import logging

from kubernetes import client, config as kube_config
from kubernetes.stream import stream

from volume_fstype.attach_state import build_attach_checker


class ClusterContext:
    """Handles to the cluster under test, passed explicitly to every component

    Args:
        core_v1: kubernetes CoreV1Api instance
        storage_v1: kubernetes StorageV1Api instance
        namespace: Namespace scenarios create their claims and pods in
        config: Loaded orchestrator configuration dictionary
        attach_checker: Object exposing is_volume_attached(volume_path, node_name)
    """

    def __init__(self, core_v1, storage_v1, namespace, config=None, attach_checker=None):
        self.core_v1 = core_v1
        self.storage_v1 = storage_v1
        self.namespace = namespace
        self.config = config or {}
        self.attach_checker = attach_checker
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, namespace=None):
        """Build a context from kubeconfig (or in-cluster service account)"""
        try:
            kube_config.load_kube_config()
        except kube_config.ConfigException:
            kube_config.load_incluster_config()
        core_v1 = client.CoreV1Api()
        storage_v1 = client.StorageV1Api()
        namespace = namespace or config.get('test', {}).get('namespace', 'volume-fstype')
        attach_checker = build_attach_checker(core_v1, config.get('attach_state', {}))
        return cls(core_v1, storage_v1, namespace, config=config, attach_checker=attach_checker)

    def timeout(self, name, default):
        return self.config.get('retries', {}).get(name, default)

    @property
    def poll_interval(self):
        return self.config.get('retries', {}).get('poll_interval', 2)

    def exec_in_pod(self, pod_name, command, namespace=None):
        """Run a command in the pod's first container and return its stdout"""
        return stream(
            self.core_v1.connect_get_namespaced_pod_exec,
            pod_name,
            namespace or self.namespace,
            command=command,
            stdin=False,
            stdout=True,
            stderr=False,
            tty=False,
        )
