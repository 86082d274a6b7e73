import logging
import time
import uuid

from kubernetes import client

from volume_fstype.errors import ProvisioningError, ProvisioningRejected, ProvisioningTimeout
from volume_fstype.models import StorageClassSpec, Volume, VolumeClaim

DEFAULT_PROVISIONER = "kubernetes.io/vsphere-volume"
STORAGE_CLASS_ANNOTATION = "volume.beta.kubernetes.io/storage-class"


class VolumeProvisioner:
    """Creates StorageClass-backed claims and waits for them to bind"""

    def __init__(self, context, metrics_collector=None):
        self.context = context
        self.metrics_collector = metrics_collector
        self.logger = logging.getLogger(__name__)

        sc_config = context.config.get('storage_class', {})
        self.provisioner = sc_config.get('provisioner', DEFAULT_PROVISIONER)
        self.extra_parameters = sc_config.get('parameters', {})

        pvc_config = context.config.get('pvc_config', {})
        self.storage_size = pvc_config.get('storage_size', "2Gi")
        self.access_modes = pvc_config.get('access_modes', ["ReadWriteOnce"])
        self.pvc_annotations = pvc_config.get('annotations', {})
        self.pvc_labels = pvc_config.get('labels', {})

        self.bind_timeout = context.timeout('pvc_bind_timeout', 300)

    def create_volume(self, parameters):
        """Provision a volume through a throwaway StorageClass

        Args:
            parameters: StorageClass parameters, minimally {'fstype': ...}

        Returns:
            Tuple of (VolumeClaim, list of bound Volume)

        Raises:
            ProvisioningRejected: The API refused the class or claim, or the claim was lost
            ProvisioningTimeout: The claim did not bind before pvc_bind_timeout
        """
        storage_class = self.create_storage_class(parameters)
        try:
            claim = self.create_claim(storage_class)
        except ProvisioningError as e:
            e.storage_class_name = storage_class.name
            raise
        except Exception as e:
            raise ProvisioningRejected(
                f"Error creating PVC with StorageClass {storage_class.name}: {e}",
                storage_class_name=storage_class.name,
            ) from e
        finally:
            # The claim captures the class parameters; the class itself is no longer needed
            self.delete_storage_class(storage_class.name)

        try:
            volumes = self.wait_for_claim_bound(claim)
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningRejected(f"Error waiting for PVC {claim.name}: {e}", claim=claim) from e
        return claim, volumes

    def build_storage_class_manifest(self, spec):
        return {
            "apiVersion": "storage.k8s.io/v1",
            "kind": "StorageClass",
            "metadata": {"name": spec.name},
            "provisioner": spec.provisioner,
            "parameters": spec.parameters,
        }

    def create_storage_class(self, parameters):
        sc_name = f"fstype-sc-{uuid.uuid4().hex[:8]}"
        merged = dict(self.extra_parameters)
        merged.update(parameters)
        spec = StorageClassSpec(name=sc_name, provisioner=self.provisioner, parameters=merged)
        self.logger.info(f"Creating StorageClass {sc_name} with parameters {merged}")
        try:
            self.context.storage_v1.create_storage_class(body=self.build_storage_class_manifest(spec))
        except client.exceptions.ApiException as e:
            raise ProvisioningRejected(f"StorageClass {sc_name} rejected: {e.reason}") from e
        return spec

    def delete_storage_class(self, sc_name):
        try:
            self.context.storage_v1.delete_storage_class(name=sc_name)
            self.logger.info(f"Deleted StorageClass {sc_name}")
        except client.exceptions.ApiException as e:
            if e.status == 404:
                self.logger.info(f"StorageClass {sc_name} already deleted")
                return
            # Teardown retries this deletion; a leftover class is not fatal here
            self.logger.warning(f"Failed to delete StorageClass {sc_name}: {e}")

    def build_claim_manifest(self, claim):
        metadata = {
            "name": claim.name,
            "namespace": claim.namespace,
            "annotations": {STORAGE_CLASS_ANNOTATION: claim.storage_class_name},
        }
        metadata["annotations"].update(self.pvc_annotations)
        if self.pvc_labels:
            metadata["labels"] = dict(self.pvc_labels)
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": metadata,
            "spec": {
                "accessModes": self.access_modes,
                "storageClassName": claim.storage_class_name,
                "resources": {"requests": {"storage": claim.size}},
            },
        }

    def create_claim(self, storage_class):
        claim = VolumeClaim(
            name=f"fstype-pvc-{uuid.uuid4().hex[:8]}",
            namespace=self.context.namespace,
            size=self.storage_size,
            storage_class_name=storage_class.name,
        )
        self.logger.info(f"Creating PVC {claim.name} using StorageClass {storage_class.name}")
        try:
            self.context.core_v1.create_namespaced_persistent_volume_claim(
                namespace=claim.namespace,
                body=self.build_claim_manifest(claim),
            )
        except client.exceptions.ApiException as e:
            raise ProvisioningRejected(f"PVC {claim.name} rejected: {e.reason}") from e
        return claim

    def get_claim_phase(self, claim):
        pvc = self.context.core_v1.read_namespaced_persistent_volume_claim(
            name=claim.name,
            namespace=claim.namespace,
        )
        return pvc.status.phase, pvc

    def wait_for_claim_bound(self, claim, timeout=None):
        """Poll the claim until Bound and return its volumes"""
        timeout = self.bind_timeout if timeout is None else timeout
        start_time = time.time()
        last_phase = None
        self.logger.info(f"Waiting up to {timeout}s for PVC {claim.name} to be bound")

        while time.time() - start_time < timeout:
            try:
                phase, pvc = self.get_claim_phase(claim)
            except client.exceptions.ApiException as e:
                if e.status == 404:
                    raise ProvisioningRejected(f"PVC {claim.name} disappeared while waiting for bind", claim=claim) from e
                self.logger.warning(f"Error checking PVC status: {e}")
                phase, pvc = None, None

            if phase != last_phase:
                self.logger.info(f"PVC {claim.name} phase: {phase}")
                last_phase = phase

            if phase == "Bound":
                bind_time = time.time() - start_time
                volumes = [self.read_volume(pvc.spec.volume_name)]
                if self.metrics_collector:
                    self.metrics_collector.track_pv_pvc_binding(claim.name, volumes[0].name, bind_time)
                self.logger.info(f"PVC {claim.name} bound to {volumes[0].name} after {bind_time:.1f}s")
                return volumes

            if phase == "Lost":
                raise ProvisioningRejected(f"PVC {claim.name} lost its volume", claim=claim)

            time.sleep(self.context.poll_interval)

        self.logger.warning(f"Timeout waiting for PVC {claim.name} to be bound after {timeout}s")
        raise ProvisioningTimeout(claim, timeout, last_phase)

    def read_volume(self, pv_name):
        pv = self.context.core_v1.read_persistent_volume(name=pv_name)
        return Volume(name=pv.metadata.name, volume_path=volume_handle(pv))


def volume_handle(pv):
    """Backend identifier of a PersistentVolume, used for attach checks"""
    spec = pv.spec
    if getattr(spec, 'vsphere_volume', None):
        return spec.vsphere_volume.volume_path
    if getattr(spec, 'csi', None):
        return spec.csi.volume_handle
    if getattr(spec, 'aws_elastic_block_store', None):
        return spec.aws_elastic_block_store.volume_id
    if getattr(spec, 'gce_persistent_disk', None):
        return spec.gce_persistent_disk.pd_name
    return pv.metadata.name
