import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from kubeapply.cluster.client import translate_api_error
from kubeapply.cluster.discovery import KubeDiscovery, ServerVersion
from kubeapply.core.errors import ConfigError, ConflictError, NotFoundError, StoreError

from fakes import FakeDiscovery, api_resource, make_object


@pytest.mark.parametrize("major,minor,expected", [
    ("1", "27", ServerVersion(1, 27)),
    ("1", "27+", ServerVersion(1, 27)),
    ("1", "5", ServerVersion(1, 5)),
])
def test_parse_server_version(major, minor, expected):
    assert ServerVersion.parse(major, minor) == expected


@pytest.mark.parametrize("major,minor", [("1", "x"), ("", "27"), ("v1", "27"), ("1", "27-gke")])
def test_unparseable_server_version(major, minor):
    with pytest.raises(ConfigError):
        ServerVersion.parse(major, minor)


def test_compare():
    version = ServerVersion(1, 6)
    assert version.compare(1, 6) == 0
    assert version.compare(1, 5) == 1
    assert version.compare(1, 10) == -1
    assert version.compare(2, 0) == -1
    assert str(version) == "1.6"


def test_describe_uses_plural_resource_name():
    discovery = FakeDiscovery([api_resource("Deployment", "deployments", group_version="apps/v1")])
    deploy = make_object("Deployment", "web", namespace="ns", api_version="apps/v1")
    widget = make_object("Widget", "w", api_version="example.com/v1")

    assert discovery.describe(deploy) == "deployments ns.web"
    assert discovery.describe(widget) == "widget w"


@pytest.mark.parametrize("status,error", [(404, NotFoundError), (409, ConflictError), (500, StoreError)])
def test_translate_api_error(status, error):
    translated = translate_api_error(ApiException(status=status, reason="Boom"), "get configmap a")
    assert type(translated) is error
    assert translated.status == status


class FakeApiClient:
    """Answers discovery GETs from canned documents, or raises a canned error."""

    def __init__(self, responses, errors=None):
        self.responses = responses
        self.errors = errors or {}
        self.requests = []

    def call_api(self, path, method, **kwargs):
        self.requests.append((method, path))
        if path in self.errors:
            raise self.errors[path]
        if path not in self.responses:
            raise ApiException(status=404, reason="Not Found")
        return self.responses[path]


DISCOVERY_RESPONSES = {
    "/api": {"versions": ["v1"]},
    "/api/v1": {"resources": [
        {"name": "pods", "kind": "Pod", "namespaced": True, "verbs": ["get", "list", "delete"]},
        {"name": "pods/log", "kind": "Pod", "namespaced": True, "verbs": ["get"]},
        {"name": "namespaces", "kind": "Namespace", "namespaced": False, "verbs": ["list"]},
    ]},
    "/apis": {"groups": [{"name": "apps", "versions": [{"groupVersion": "apps/v1", "version": "v1"}]}]},
    "/apis/apps/v1": {"resources": [
        {"name": "deployments", "kind": "Deployment", "namespaced": True, "verbs": ["list"]},
        {"name": "deployments/scale", "kind": "Scale", "namespaced": True, "verbs": ["get"]},
    ]},
    "/version": {"major": "1", "minor": "28+", "gitVersion": "v1.28.3-gke.1"},
}


def test_kube_discovery_resources_and_version():
    api = FakeApiClient(DISCOVERY_RESPONSES)
    discovery = KubeDiscovery(api)

    resources = discovery.server_resources()
    assert [(r.group_version, r.name, r.namespaced) for r in resources] == [
        ("v1", "pods", True),
        ("v1", "namespaces", False),
        ("apps/v1", "deployments", True),
    ]
    assert all(r.listable for r in resources)

    # Cached for the lifetime of the instance
    requests = len(api.requests)
    discovery.server_resources()
    assert len(api.requests) == requests

    assert discovery.server_version() == ServerVersion(1, 28)


def test_kube_discovery_missing_schema():
    with pytest.raises(NotFoundError):
        KubeDiscovery(FakeApiClient(DISCOVERY_RESPONSES)).openapi_schema()


@pytest.mark.parametrize("error", [
    MaxRetryError(None, "/openapi/v2"),
    ReadTimeoutError(None, "/openapi/v2", "Read timed out."),
])
def test_kube_discovery_transport_failure(error):
    discovery = KubeDiscovery(FakeApiClient(DISCOVERY_RESPONSES, errors={"/openapi/v2": error}))

    with pytest.raises(StoreError, match="discovery GET /openapi/v2") as info:
        discovery.openapi_schema()
    assert info.value.status is None
    assert info.value.__cause__ is error
