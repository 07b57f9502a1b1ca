import socket

import pytest

from kubernetes.client.exceptions import ApiException
from werkzeug.serving import make_server

import certs
import main
import mutate
from exc import CertificateError


@pytest.mark.parametrize(
    "address,expected",
    [
        (":8080", ("0.0.0.0", 8080)),
        ("127.0.0.1:8443", ("127.0.0.1", 8443)),
        ("[::1]:443", ("::1", 443)),
    ],
)
def test_parse_listen_address(address, expected):
    assert main.parse_listen_address(address) == expected


def test_service_names():
    host, alternate_dns = main.service_names("webhook", "burst")
    assert host == "webhook.burst.svc"
    assert alternate_dns == [
        "webhook",
        "webhook.burst",
        "webhook.burst.svc.cluster.local",
    ]


@pytest.fixture()
def servers(monkeypatch):
    """Record the servers main creates and close them afterwards"""
    created = []

    def _make_server(*args, **kwargs):
        server = make_server(*args, **kwargs)
        created.append(server)
        return server

    monkeypatch.setattr(main, "make_server", _make_server)
    yield created

    for server in created:
        server.server_close()


def test_registration_failure_exits(monkeypatch, make_app, servers):
    """Registration happens once the listener is bound, and a failed
    registration stops the process with a non-zero status"""
    bound_at_registration = []

    def create_webhook_configuration(body):
        port = servers[0].server_port
        with socket.create_connection(("127.0.0.1", port), timeout=5):
            bound_at_registration.append(True)
        raise ApiException(status=403, reason="Forbidden")

    def create_app():
        app = make_app(LISTEN_ADDRESS="127.0.0.1:0")
        app.provider.create_webhook_configuration = create_webhook_configuration
        return app

    monkeypatch.setattr(mutate, "create_app", create_app)

    with pytest.raises(SystemExit) as exc_info:
        main.main()

    assert exc_info.value.code == 1
    assert bound_at_registration == [True]


def test_certificate_failure_exits(monkeypatch, make_app, servers):
    def generate_self_signed_cert_key(host, alternate_ips=(), alternate_dns=()):
        raise CertificateError("no entropy")

    monkeypatch.setattr(mutate, "create_app", lambda: make_app())
    monkeypatch.setattr(
        certs, "generate_self_signed_cert_key", generate_self_signed_cert_key
    )

    with pytest.raises(SystemExit) as exc_info:
        main.main()

    assert exc_info.value.code == 1
    assert servers == []
