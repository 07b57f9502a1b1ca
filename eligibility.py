import logging

from models import Pod, VolumeKind

LOG = logging.getLogger(__name__)

BURST_TO_CCI_ANNOTATION = "virtual-kubelet.io/burst-to-cci"
STORAGE_CLASS_ANNOTATION = "volume.beta.kubernetes.io/storage-class"
STORAGE_PROVISIONER_ANNOTATION = "volume.beta.kubernetes.io/storage-provisioner"
NFS_MARKER = "nfs"


def needs_sync(annotations: dict[str, str]) -> bool:
    """Only claims backed by an NFS storage class can follow a pod to CCI."""
    return NFS_MARKER in annotations.get(
        STORAGE_CLASS_ANNOTATION, ""
    ) and NFS_MARKER in annotations.get(STORAGE_PROVISIONER_ANNOTATION, "")


def should_patch(provider, pod: Pod) -> bool:
    # Pods have to opt in.
    if BURST_TO_CCI_ANNOTATION not in pod.metadata.annotations:
        return False

    compatible = 0
    for volume in pod.spec.volumes:
        kind = volume.kind
        if kind == VolumeKind.PERSISTENT_VOLUME_CLAIM:
            claim_name = volume.persistentVolumeClaim.claimName
            try:
                annotations = provider.claim_annotations(
                    pod.metadata.namespace, claim_name
                )
            except Exception as err:
                LOG.warning(
                    "failed to get claim %s/%s: %s",
                    pod.metadata.namespace,
                    claim_name,
                    err,
                )
                return False

            if needs_sync(annotations):
                compatible += 1
        elif kind in (VolumeKind.CONFIG_MAP, VolumeKind.SECRET):
            compatible += 1

    if compatible != len(pod.spec.volumes):
        LOG.info(
            "%s/%s has volumes that cannot be used on CCI",
            pod.metadata.namespace,
            pod.metadata.name,
        )
        return False

    if pod.spec.hostNetwork:
        return False

    return True
