import pytest

from kubernetes.client.exceptions import ApiException

import mutate
from eligibility import STORAGE_CLASS_ANNOTATION, STORAGE_PROVISIONER_ANNOTATION


CLAIMS = {
    ("default", "nfs-claim"): {
        STORAGE_CLASS_ANNOTATION: "sfs-nfs",
        STORAGE_PROVISIONER_ANNOTATION: "flexvolume-huawei.com/fuxinfs",
    },
    ("default", "block-claim"): {
        STORAGE_CLASS_ANNOTATION: "sata",
        STORAGE_PROVISIONER_ANNOTATION: "flexvolume-huawei.com/fuxivol",
    },
}


class FakeProvider:
    def __init__(self, lookup_timeout=None):
        self.lookup_timeout = lookup_timeout
        self.lookups = []
        self.webhook_configurations = {}

    def claim_annotations(self, namespace, claim_name):
        self.lookups.append((namespace, claim_name))
        try:
            return CLAIMS[(namespace, claim_name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def get_webhook_configuration(self, name):
        return self.webhook_configurations.get(name)

    def create_webhook_configuration(self, body):
        name = body["metadata"]["name"]
        if name in self.webhook_configurations:
            raise ApiException(status=409, reason="Conflict")

        body["metadata"]["resourceVersion"] = "1"
        self.webhook_configurations[name] = body
        return body

    def replace_webhook_configuration(self, name, body):
        existing = self.webhook_configurations.get(name)
        if existing is None:
            raise ApiException(status=404, reason="Not Found")
        if body["metadata"].get("resourceVersion") != existing["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

        body["metadata"]["resourceVersion"] = str(
            int(existing["metadata"]["resourceVersion"]) + 1
        )
        self.webhook_configurations[name] = body
        return body

    def client_ca(self):
        return None


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def app():
    app = mutate.create_app(
        PROVIDER=FakeProvider,
        TESTING=True,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_app():
    create_app = mutate.create_app

    def _make_app(**config):
        return create_app(PROVIDER=FakeProvider, TESTING=True, **config)

    return _make_app
