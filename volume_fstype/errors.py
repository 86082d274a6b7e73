"""Error taxonomy for the volume fstype lifecycle workflow"""


class VolumeLifecycleError(Exception):
    """Base class for all workflow failures"""


class PreflightError(VolumeLifecycleError):
    """The cluster is not in a state where scenarios can run"""


class ProvisioningError(VolumeLifecycleError):
    """Claim never reached the Bound phase

    Args:
        message: Human-readable failure description
        claim: The VolumeClaim if it was created, so teardown can release it
        storage_class_name: The StorageClass if it was created, for the same reason
    """

    def __init__(self, message, claim=None, storage_class_name=None):
        super().__init__(message)
        self.claim = claim
        if storage_class_name is None and claim is not None:
            storage_class_name = claim.storage_class_name
        self.storage_class_name = storage_class_name


class ProvisioningTimeout(ProvisioningError):
    def __init__(self, claim, timeout, last_phase=None):
        super().__init__(
            f"Claim {claim.name} not bound after {timeout}s (last phase: {last_phase})",
            claim=claim,
        )
        self.timeout = timeout
        self.last_phase = last_phase


class ProvisioningRejected(ProvisioningError):
    pass


class AttachError(VolumeLifecycleError):
    """Workload could not be created or never reached Running

    The workload is kept (when it was created) so teardown can delete it
    and wait for the volume to leave its node.
    """

    def __init__(self, reason, workload=None):
        super().__init__(reason)
        self.reason = reason
        self.workload = workload


class UnexpectedAttachSuccess(VolumeLifecycleError):
    def __init__(self, workload):
        super().__init__(f"Workload {workload.name} started although the volume should not be mountable")
        self.workload = workload


class MismatchError(VolumeLifecycleError):
    def __init__(self, expected, actual):
        super().__init__(f"Expected filesystem type {expected!r}, found {actual!r}")
        self.expected = expected
        self.actual = actual


class ClassificationMiss(VolumeLifecycleError):
    def __init__(self, volume_name, expected_message):
        super().__init__(f"Expected diagnostic not found for volume {volume_name}: {expected_message!r}")
        self.volume_name = volume_name
        self.expected_message = expected_message


class TeardownError(VolumeLifecycleError):
    """One failed teardown step

    Args:
        step: Teardown step name ('delete_pod', 'detach', 'delete_pvc', 'delete_storage_class')
        resource: Name of the resource the step acted on
        cause: Exception or message describing the failure
    """

    def __init__(self, step, resource, cause):
        super().__init__(f"Teardown step {step} failed for {resource}: {cause}")
        self.step = step
        self.resource = resource
        self.cause = cause
