import logging
import time

from volume_fstype.errors import MismatchError

READ_FSTYPE_COMMAND = ["/bin/cat", "/mnt/volume1/fstype"]


class MountVerifier:
    """Reads the filesystem type the pod's probe recorded and compares it"""

    def __init__(self, context):
        self.context = context
        self.logger = logging.getLogger(__name__)
        pod_config = context.config.get('pod_config', {})
        self.read_command = pod_config.get('read_command', READ_FSTYPE_COMMAND)
        self.lookup_timeout = context.timeout('fstype_lookup_timeout', 60)

    def read_fstype(self, workload):
        output = self.context.exec_in_pod(workload.name, self.read_command, namespace=workload.namespace)
        return (output or "").strip()

    def verify_fstype(self, workload, expected, timeout=None):
        """Poll the pod until it reports `expected`

        Empty output and exec errors are expected while the container starts
        and the probe has not written its file yet.

        Raises:
            MismatchError: `expected` never appeared before the timeout
        """
        timeout = self.lookup_timeout if timeout is None else timeout
        start_time = time.time()
        actual = None
        self.logger.info(f"Looking for fstype {expected!r} in pod {workload.name}")

        while time.time() - start_time < timeout:
            try:
                output = self.read_fstype(workload)
            except Exception as e:
                self.logger.debug(f"Exec in pod {workload.name} failed, retrying: {e}")
                output = ""

            if output:
                actual = output
                if output == expected:
                    self.logger.info(f"Pod {workload.name} reports fstype {output!r}")
                    return
                self.logger.debug(f"Pod {workload.name} reports {output!r}, waiting for {expected!r}")

            time.sleep(self.context.poll_interval)

        raise MismatchError(expected, actual)
