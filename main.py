import logging
import sys

from kubernetes.client.exceptions import ApiException
from werkzeug.serving import make_server

import certs
import mutate
import registration
from exc import ApplicationError

LOG = logging.getLogger(__name__)


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a "host:port" listen address. An empty host means all interfaces."""
    host, _, port = address.rpartition(":")
    return host.strip("[]") or "0.0.0.0", int(port)


def service_names(service: str, namespace: str) -> tuple[str, list[str]]:
    """Return the host name and alternate DNS names the API server may use."""
    host = f"{service}.{namespace}.svc"
    return host, [
        service,
        f"{service}.{namespace}",
        f"{service}.{namespace}.svc.cluster.local",
    ]


def main():
    try:
        app = mutate.create_app()
        cfg = app.config
        namespace = cfg["NAMESPACE"]

        host, alternate_dns = service_names(cfg["SERVICE_NAME"], namespace)
        material = certs.generate_self_signed_cert_key(host, alternate_dns=alternate_dns)

        client_ca = app.provider.client_ca() if cfg["VERIFY_CLIENT_CA"] else None
        context = certs.server_ssl_context(material, client_ca=client_ca)

        # The listening socket is bound once make_server returns, so the API
        # server can reach us as soon as the configuration exists.
        address, port = parse_listen_address(cfg["LISTEN_ADDRESS"])
        server = make_server(address, port, app, threaded=True, ssl_context=context)
        LOG.info("listening for HTTPS on %s:%d", address, port)

        registration.register(
            app.provider,
            material.ca_cert,
            namespace,
            service_name=cfg["SERVICE_NAME"],
            service_port=int(cfg["SERVICE_PORT"]),
            timeout_seconds=int(cfg["WEBHOOK_TIMEOUT"]),
            exclude_namespace_label=cfg["EXCLUDE_NAMESPACE_LABEL"],
        )
    except (ApplicationError, ApiException, OSError, ValueError) as err:
        LOG.error("unable to start webhook: %s", err)
        sys.exit(1)

    server.serve_forever()


if __name__ == "__main__":
    main()
