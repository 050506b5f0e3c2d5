"""
Acceptance test fixtures — k3s testcontainer for end-to-end tests.

Reuses the cluster fixtures of the integration suite.
"""

from __future__ import annotations

from tests.integration.conftest import (  # noqa: F401
    api_client,
    core_api,
    custom_api,
    kube_store,
    namespace,
)
