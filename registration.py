import base64
import logging

from kubernetes.client.exceptions import ApiException

from exc import RegistrationError

LOG = logging.getLogger(__name__)

WEBHOOK_CONFIGURATION_NAME = "virtual-kubelet-scheduler"
WEBHOOK_NAME = "virtual-kubelet-scheduler.cci.io"
WEBHOOK_PATH = "/mutate"


def webhook_configuration(
    ca_cert: bytes,
    namespace: str,
    service_name: str = "webhook",
    service_port: int = 443,
    timeout_seconds: int = 10,
    exclude_namespace_label: str | None = None,
) -> dict:
    """Describe the MutatingWebhookConfiguration that routes pod creation to us.

    The API server verifies our certificate against `ca_cert`. Pods are
    rejected when the webhook cannot be reached (failurePolicy Fail).
    """
    webhook = {
        "name": WEBHOOK_NAME,
        "admissionReviewVersions": ["v1", "v1beta1"],
        "sideEffects": "None",
        "failurePolicy": "Fail",
        "timeoutSeconds": timeout_seconds,
        "rules": [
            {
                "operations": ["CREATE"],
                "apiGroups": [""],
                "apiVersions": ["v1"],
                "resources": ["pods"],
            }
        ],
        "clientConfig": {
            "service": {
                "namespace": namespace,
                "name": service_name,
                "path": WEBHOOK_PATH,
                "port": service_port,
            },
            "caBundle": base64.b64encode(ca_cert).decode(),
        },
    }

    # Namespaces already managed by the burst provider would otherwise call
    # back into this webhook for the pods it creates.
    if exclude_namespace_label:
        webhook["namespaceSelector"] = {
            "matchExpressions": [
                {"key": exclude_namespace_label, "operator": "DoesNotExist"}
            ]
        }

    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "MutatingWebhookConfiguration",
        "metadata": {"name": WEBHOOK_CONFIGURATION_NAME},
        "webhooks": [webhook],
    }


def _replace(provider, existing, body):
    body["metadata"]["resourceVersion"] = existing["metadata"]["resourceVersion"]
    provider.replace_webhook_configuration(WEBHOOK_CONFIGURATION_NAME, body)
    LOG.info("%s replaced", WEBHOOK_CONFIGURATION_NAME)


def register(provider, ca_cert: bytes, namespace: str, **options) -> dict:
    """Create or replace our webhook configuration.

    An existing configuration is replaced in place using its resourceVersion,
    so there is no moment where pod creation bypasses the webhook.
    """
    body = webhook_configuration(ca_cert, namespace, **options)

    try:
        existing = provider.get_webhook_configuration(WEBHOOK_CONFIGURATION_NAME)
        if existing is None:
            try:
                provider.create_webhook_configuration(body)
                LOG.info("%s created", WEBHOOK_CONFIGURATION_NAME)
            except ApiException as err:
                if err.status != 409:
                    raise

                # Someone created it between our read and our create.
                existing = provider.get_webhook_configuration(
                    WEBHOOK_CONFIGURATION_NAME
                )
                if existing is None:
                    raise
                _replace(provider, existing, body)
        else:
            _replace(provider, existing, body)
    except ApiException as err:
        LOG.error("failed to register %s: %s", WEBHOOK_CONFIGURATION_NAME, err)
        raise RegistrationError(
            f"failed to register {WEBHOOK_CONFIGURATION_NAME}: {err.reason}"
        )

    return body
