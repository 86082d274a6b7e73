import logging
import time

from kubernetes import client

from volume_fstype.models import DiagnosticEvent

MOUNT_DEVICE_FAILURE = 'MountVolume.MountDevice failed for volume "{volume_name}" : executable file not found'


def expected_mount_failure_message(volume_name):
    """Kubelet message for a mount that failed because mkfs.<fstype> is missing"""
    return MOUNT_DEVICE_FAILURE.format(volume_name=volume_name)


class FailureClassifier:
    """Confirms a failure happened for the expected reason by scanning events

    A pod that never starts is not enough evidence on its own; the event
    stream has to name the volume and the missing mount helper.
    """

    def __init__(self, context):
        self.context = context
        self.logger = logging.getLogger(__name__)
        self.lookup_timeout = context.timeout('event_lookup_timeout', 60)

    def list_events(self, namespace):
        events = self.context.core_v1.list_namespaced_event(namespace=namespace)
        return [DiagnosticEvent.from_api(event) for event in events.items]

    def find_matching_events(self, namespace, substring):
        events = self.list_events(namespace)
        matches = [event for event in events if substring in event.message]
        return matches, len(events)

    def confirm_expected_failure(self, namespace, volume_name, substring=None, timeout=None):
        """Poll namespace events for the diagnostic naming `volume_name`

        Returns:
            True if at least one event message contains the substring
        """
        substring = substring or expected_mount_failure_message(volume_name)
        timeout = self.lookup_timeout if timeout is None else timeout
        start_time = time.time()
        scanned = 0
        self.logger.info(f"Looking for event containing: {substring}")

        while True:
            try:
                matches, scanned = self.find_matching_events(namespace, substring)
            except client.exceptions.ApiException as e:
                self.logger.warning(f"Error listing events in {namespace}: {e}")
                matches = []

            if matches:
                for event in matches:
                    self.logger.info(f"Matched event on {event.kind}/{event.target_name}: {event.reason}: {event.message}")
                return True

            if time.time() - start_time >= timeout:
                break
            time.sleep(self.context.poll_interval)

        self.logger.warning(f"No event matched after scanning {scanned} events for {timeout}s")
        return False
