"""Shared pytest fixtures for emporix-reconciler tests."""

import copy
import threading
import time

import pytest
from dotenv import load_dotenv
from pydantic import SecretStr

from emporix_reconciler.catalog import default_catalog
from emporix_reconciler.config import Config
from emporix_reconciler.errors import Conflict, NotFound
from emporix_reconciler.reconcile.coordinator import ReconciliationCoordinator
from emporix_reconciler.reconcile.locks import TenantMutexRegistry
from emporix_reconciler.reconcile.models import TenantCredentials, TenantToken
from emporix_reconciler.reconcile.tokens import TokenCache

load_dotenv()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGateway:
    """In-memory ``ApiGateway`` keyed by item path.

    Every stored resource carries a version that starts at 1 and grows with
    each update; updates sent with another version raise ``Conflict``.
    Queue failures with ``fail_next`` and slow calls down with ``delay``.
    """

    def __init__(self):
        self.resources: dict[str, object] = {}
        self.versions: dict[str, int] = {}
        self.calls: list[tuple] = []
        self.failures: list[tuple[str, BaseException]] = []
        self.delay = 0.0
        self.echo = True
        self.assign_ids = False
        self.next_id = 1
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    # -- helpers -----------------------------------------------------------

    def fail_next(self, operation, error, times=1):
        for _ in range(times):
            self.failures.append((operation, error))

    def seed(self, path, body, version=1):
        self.resources[path] = copy.deepcopy(body)
        self.versions[path] = version

    def calls_to(self, operation):
        return [call for call in self.calls if call[0] == operation]

    def _enter(self, operation, path, **details):
        with self._lock:
            self.calls.append((operation, path, details))
            self._active += 1
            self.max_active = max(self.max_active, self._active)
            failure = None
            for index, (op, error) in enumerate(self.failures):
                if op in (operation, "*"):
                    failure = self.failures.pop(index)[1]
                    break
        try:
            if self.delay:
                time.sleep(self.delay)
            if failure is not None:
                raise failure
        finally:
            with self._lock:
                self._active -= 1

    def _reply(self, path):
        if not self.echo:
            return None, None
        return copy.deepcopy(self.resources[path]), self.versions[path]

    # -- ApiGateway --------------------------------------------------------

    def create(self, path, body, *, token, headers=None):
        self._enter("create", path, body=copy.deepcopy(body), token=token, headers=headers)
        item = body[0] if isinstance(body, list) else body
        item = copy.deepcopy(item)
        key = None
        if not self.assign_ids:
            key = (
                item.get("code")
                or item.get("id")
                or item.get("key")
                or (item.get("location") or {}).get("countryCode")
            )
        if key is None:
            key = f"gen-{self.next_id}"
            self.next_id += 1
            item["id"] = key
        item_path = f"{path}/{key}"
        if item_path in self.resources:
            raise Conflict(f"POST {path} failed with status 409: exists")
        self.seed(item_path, item)
        if not self.echo:
            return None, None
        reply, version = self._reply(item_path)
        if isinstance(body, list):
            return [reply], version
        return reply, version

    def read(self, path, *, token, headers=None):
        self._enter("read", path, token=token, headers=headers)
        if path not in self.resources:
            raise NotFound(f"GET {path} failed with status 404")
        return copy.deepcopy(self.resources[path]), self.versions[path]

    def patch(
        self,
        path,
        body,
        version,
        *,
        token,
        headers=None,
        method="PATCH",
        version_field="metadata.version",
    ):
        self._enter(
            "patch",
            path,
            body=copy.deepcopy(body),
            version=version,
            token=token,
            headers=headers,
            method=method,
            version_field=version_field,
        )
        if path not in self.resources:
            raise NotFound(f"{method} {path} failed with status 404")
        if version is not None and version != self.versions[path]:
            raise Conflict(f"{method} {path} failed with status 409: version")
        if method == "PUT":
            self.resources[path] = copy.deepcopy(body)
        else:
            _merge(self.resources[path], body)
        self.versions[path] += 1
        return self._reply(path)

    def delete(self, path, *, token, headers=None):
        self._enter("delete", path, token=token, headers=headers)
        parent, _, name = path.rpartition("/mixins/")
        if name and parent in self.resources:
            resource = self.resources[parent]
            resource.get("mixins", {}).pop(name, None)
            resource.get("metadata", {}).get("mixins", {}).pop(name, None)
            return
        if path not in self.resources:
            raise NotFound(f"DELETE {path} failed with status 404")
        del self.resources[path]
        del self.versions[path]


def _merge(target, patch):
    """JSON merge patch: ``None`` removes a key, objects merge recursively."""
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeTokenEndpoint:
    """Blocking token fetch that counts calls and can be told to fail."""

    def __init__(self, lifetime=3600.0, delay=0.0, clock=time.time):
        self.lifetime = lifetime
        self.delay = delay
        self.clock = clock
        self.calls = 0
        self.errors: list[BaseException] = []
        self._lock = threading.Lock()

    def __call__(self, tenant, credentials):
        with self._lock:
            self.calls += 1
            number = self.calls
            error = self.errors.pop(0) if self.errors else None
        if self.delay:
            time.sleep(self.delay)
        if error is not None:
            raise error
        return TenantToken(
            token=SecretStr(f"token-{number}"),
            expires_at=self.clock() + self.lifetime,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        tenant="acme",
        api_url="https://api.example.com",
        client_id="client-id",
        client_secret="client-secret",
    )


@pytest.fixture
def credentials():
    return TenantCredentials(
        client_id="client-id", client_secret=SecretStr("client-secret")
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def token_endpoint():
    return FakeTokenEndpoint()


@pytest.fixture
def make_endpoint():
    """Factory for token endpoints with custom lifetime, delay or clock."""
    return FakeTokenEndpoint


@pytest.fixture
def token_cache(token_endpoint):
    return TokenCache(token_endpoint, backoff=0, timeout=5.0)


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def coordinator(gateway, token_cache, catalog, credentials):
    """Coordinator over the fake gateway with retries but no backoff."""
    return ReconciliationCoordinator(
        gateway,
        token_cache,
        TenantMutexRegistry(),
        catalog,
        "acme",
        credentials,
        deadline=5.0,
        max_retries=3,
        backoff=0,
    )
