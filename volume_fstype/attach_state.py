"""Attach state lookups: is a volume attached to a given node?"""

import logging

import boto3
from kubernetes import client


class NodeStatusAttachChecker:
    """Reads node.status.volumesAttached

    Attached names look like `kubernetes.io/vsphere-volume/<volume path>` or
    `kubernetes.io/csi/<driver>^<volume handle>`; a volume matches when the part
    after the plugin prefix equals its path or handle.
    """

    def __init__(self, core_v1):
        self.core_v1 = core_v1
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def attached_handle(attached_name):
        if "^" in attached_name:
            return attached_name.split("^", 1)[1]
        parts = attached_name.split("/", 2)
        if len(parts) == 3 and parts[0] == "kubernetes.io":
            return parts[2]
        return attached_name

    def is_volume_attached(self, volume_path, node_name):
        try:
            node = self.core_v1.read_node(name=node_name)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                self.logger.warning(f"Node {node_name} not found, treating {volume_path} as detached")
                return False
            raise
        attached = node.status.volumes_attached or []
        for volume in attached:
            if self.attached_handle(volume.name) == volume_path:
                return True
        return False


class EBSAttachChecker:
    """Asks EC2 which instance an EBS volume is attached to

    Node identity comes from spec.providerID (`aws:///<zone>/<instance-id>`),
    volume identity from the PV handle (`aws://<zone>/<volume-id>` or a bare id).
    """

    ATTACHED_STATES = ("attaching", "attached", "detaching")

    def __init__(self, core_v1, region=None, ec2_client=None):
        self.core_v1 = core_v1
        self.ec2 = ec2_client or boto3.client('ec2', region_name=region)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def volume_id(volume_path):
        return volume_path.rstrip('/').split('/')[-1]

    def instance_id(self, node_name):
        node = self.core_v1.read_node(name=node_name)
        provider_id = node.spec.provider_id or ""
        return provider_id.rstrip('/').split('/')[-1] or None

    def is_volume_attached(self, volume_path, node_name):
        try:
            instance_id = self.instance_id(node_name)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                self.logger.warning(f"Node {node_name} not found, treating {volume_path} as detached")
                return False
            raise
        response = self.ec2.describe_volumes(VolumeIds=[self.volume_id(volume_path)])
        for volume in response.get('Volumes', []):
            for attachment in volume.get('Attachments', []):
                if attachment.get('InstanceId') == instance_id and attachment.get('State') in self.ATTACHED_STATES:
                    return True
        return False


def build_attach_checker(core_v1, attach_config):
    """Pick the attach checker named by the `attach_state` config section"""
    backend = attach_config.get('backend', 'node_status')
    if backend == 'node_status':
        return NodeStatusAttachChecker(core_v1)
    if backend == 'aws_ebs':
        return EBSAttachChecker(core_v1, region=attach_config.get('region'))
    raise ValueError(f"Unknown attach_state backend: {backend}")
