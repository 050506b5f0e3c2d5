"""
Integration test fixtures — k3s testcontainer with the TLSSecretWatcher CRD.

Provides a real Kubernetes API server for each test session via
testcontainers. The TLSSecretWatcher CustomResourceDefinition is installed
once; each test gets a fresh namespace with a 'default' watcher in it.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator

import pytest
import yaml
from kubernetes import client as kube_client
from kubernetes import config as kube_config
from tenacity import Retrying, retry_if_exception_type, stop_after_delay, wait_fixed
from testcontainers.k3s import K3SContainer

from tls_ca_sync.adapters.kube_store import KubeRecordStore

GROUP = "cert.pottmeier.de"
VERSION = "v1"
PLURAL = "tlssecretwatchers"

CRD = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": f"{PLURAL}.{GROUP}"},
    "spec": {
        "group": GROUP,
        "scope": "Namespaced",
        "names": {
            "plural": PLURAL,
            "singular": "tlssecretwatcher",
            "kind": "TLSSecretWatcher",
        },
        "versions": [
            {
                "name": VERSION,
                "served": True,
                "storage": True,
                "schema": {
                    "openAPIV3Schema": {
                        "type": "object",
                        "properties": {
                            "spec": {
                                "type": "object",
                                "properties": {"checkCA": {"type": "boolean"}},
                            }
                        },
                    }
                },
            }
        ],
    },
}


@pytest.fixture(scope="session")
def api_client() -> Iterator[kube_client.ApiClient]:
    """Start a k3s container and install the TLSSecretWatcher CRD."""
    with K3SContainer() as k3s:
        client = kube_config.new_client_from_config_dict(yaml.safe_load(k3s.config_yaml()))
        kube_client.ApiextensionsV1Api(client).create_custom_resource_definition(CRD)

        custom = kube_client.CustomObjectsApi(client)
        for attempt in Retrying(
            retry=retry_if_exception_type(kube_client.ApiException),
            stop=stop_after_delay(60),
            wait=wait_fixed(1),
            reraise=True,
        ):
            with attempt:
                custom.list_cluster_custom_object(GROUP, VERSION, PLURAL)
        yield client


@pytest.fixture()
def core_api(api_client: kube_client.ApiClient) -> kube_client.CoreV1Api:
    return kube_client.CoreV1Api(api_client)


@pytest.fixture()
def custom_api(api_client: kube_client.ApiClient) -> kube_client.CustomObjectsApi:
    return kube_client.CustomObjectsApi(api_client)


@pytest.fixture()
def namespace(core_api: kube_client.CoreV1Api) -> Iterator[str]:
    """A fresh namespace per test, deleted afterwards."""
    name = f"it-{uuid.uuid4().hex[:8]}"
    core_api.create_namespace(kube_client.V1Namespace(metadata=kube_client.V1ObjectMeta(name=name)))
    yield name
    core_api.delete_namespace(name)


def create_watcher(
    custom_api: kube_client.CustomObjectsApi, namespace: str, check_ca: bool
) -> None:
    custom_api.create_namespaced_custom_object(
        GROUP,
        VERSION,
        namespace,
        PLURAL,
        {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": "TLSSecretWatcher",
            "metadata": {"name": "default"},
            "spec": {"checkCA": check_ca},
        },
    )


@pytest.fixture()
def kube_store(
    core_api: kube_client.CoreV1Api,
    custom_api: kube_client.CustomObjectsApi,
) -> KubeRecordStore:
    return KubeRecordStore(
        core_api=core_api,
        custom_api=custom_api,
        watch_group=GROUP,
        watch_version=VERSION,
        watch_plural=PLURAL,
        request_timeout=10,
    )
