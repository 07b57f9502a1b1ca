import logging

from kubernetes import config, client
from kubernetes.dynamic.exceptions import NotFoundError
from openshift.dynamic import DynamicClient
from typing_extensions import Protocol

from exc import ProviderError

LOG = logging.getLogger(__name__)

CLIENT_CA_NAMESPACE = "kube-system"
CLIENT_CA_CONFIGMAP = "extension-apiserver-authentication"
CLIENT_CA_KEY = "requestheader-client-ca-file"


class Provider(Protocol):
    def claim_annotations(self, namespace: str, claim_name: str) -> dict[str, str]: ...

    def get_webhook_configuration(self, name: str) -> dict | None: ...

    def create_webhook_configuration(self, body: dict) -> dict: ...

    def replace_webhook_configuration(self, name: str, body: dict) -> dict: ...

    def client_ca(self) -> str | None: ...


class KubernetesProvider(Provider):
    def __init__(self, lookup_timeout: float | None = None):
        """Allocate a Kubernetes dynamic client and the resources we use"""

        super().__init__()

        try:
            config.load_config()
        except config.ConfigException as err:
            LOG.warning("unable to configure Kubernetes client: %s", err)
            raise ProviderError("unable to configure Kubernetes client")

        k8s_client = client.ApiClient()
        dyn_client = DynamicClient(k8s_client)

        self._client = dyn_client
        self._lookup_timeout = lookup_timeout
        self._pvc_resource = dyn_client.resources.get(
            api_version="v1", kind="PersistentVolumeClaim"
        )
        self._configmap_resource = dyn_client.resources.get(
            api_version="v1", kind="ConfigMap"
        )
        self._webhook_resource = dyn_client.resources.get(
            api_version="admissionregistration.k8s.io/v1",
            kind="MutatingWebhookConfiguration",
        )

    def claim_annotations(self, namespace, claim_name):
        pvc = self._pvc_resource.get(
            name=claim_name,
            namespace=namespace,
            _request_timeout=self._lookup_timeout,
        )
        return pvc.to_dict()["metadata"].get("annotations") or {}

    def get_webhook_configuration(self, name):
        try:
            return self._webhook_resource.get(name=name).to_dict()
        except NotFoundError:
            return None

    def create_webhook_configuration(self, body):
        return self._webhook_resource.create(body=body).to_dict()

    def replace_webhook_configuration(self, name, body):
        return self._webhook_resource.replace(name=name, body=body).to_dict()

    def client_ca(self):
        """Return the CA the API server uses to sign its client certificates."""
        cm = self._configmap_resource.get(
            name=CLIENT_CA_CONFIGMAP, namespace=CLIENT_CA_NAMESPACE
        )
        data = cm.to_dict().get("data") or {}
        ca = data.get(CLIENT_CA_KEY)
        if ca is None:
            LOG.warning(
                "%s/%s has no %s", CLIENT_CA_NAMESPACE, CLIENT_CA_CONFIGMAP, CLIENT_CA_KEY
            )
        return ca
