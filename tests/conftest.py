"""Shared test fixtures: in-memory fakes of the cluster and management API."""

import base64
import copy
import itertools

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from noobaa_operator import crd
from noobaa_operator.context import Context
from noobaa_operator.k8s import Cluster
from noobaa_operator.nb import AccessKey, Account, RPCError

NAMESPACE = "storage"
NAME = "mystore"


class FakeCluster(Cluster):
    """Keeps objects in memory and behaves like the API server on writes.

    Secrets have string_data merged into base64 data, services get a
    cluster IP and node ports, and replaces check the resource version.
    """

    def __init__(self):
        self.objects = {}
        self.noobaas = {}
        self.pods = []
        self.writes = []
        self.status_writes = 0
        self.fail_status_update = None
        self.fail_list = None
        self._versions = itertools.count(1)
        self._ips = itertools.count(1)
        self._node_ports = itertools.count(30001)

    def _key(self, cls, namespace, name):
        return (cls.__name__, namespace, name)

    def _store(self, obj):
        stored = copy.deepcopy(obj)
        meta = stored.metadata
        meta.resource_version = str(next(self._versions))
        meta.uid = meta.uid or f"uid-{meta.name}"
        if isinstance(stored, client.V1Secret):
            data = dict(stored.data or {})
            for key, value in (stored.string_data or {}).items():
                data[key] = base64.b64encode(value.encode("utf-8")).decode("ascii")
            stored.data = data
            stored.string_data = None
        if isinstance(stored, client.V1Service):
            if not stored.spec.cluster_ip:
                stored.spec.cluster_ip = f"10.96.0.{next(self._ips)}"
            if stored.spec.type in ("LoadBalancer", "NodePort"):
                for port in stored.spec.ports or []:
                    if not port.node_port:
                        port.node_port = next(self._node_ports)
        self.objects[self._key(type(stored), meta.namespace, meta.name)] = stored
        return copy.deepcopy(stored)

    def get(self, ctx, cls, namespace, name):
        ctx.check()
        obj = self.objects.get(self._key(cls, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, ctx, cls, namespace, selector=None):
        ctx.check()
        if self.fail_list is not None:
            raise self.fail_list
        selector = selector or {}
        return [
            copy.deepcopy(pod)
            for pod in self.pods
            if pod.metadata.namespace == namespace
            and all((pod.metadata.labels or {}).get(k) == v for k, v in selector.items())
        ]

    def create(self, ctx, obj):
        ctx.check()
        if self._key(type(obj), obj.metadata.namespace, obj.metadata.name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.writes.append(("create", type(obj).__name__, obj.metadata.name))
        return self._store(obj)

    def update(self, ctx, obj):
        ctx.check()
        current = self.objects.get(self._key(type(obj), obj.metadata.namespace, obj.metadata.name))
        if current is None:
            raise ApiException(status=404, reason="NotFound")
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict")
        self.writes.append(("update", type(obj).__name__, obj.metadata.name))
        return self._store(obj)

    def get_noobaa(self, ctx, namespace, name):
        ctx.check()
        noobaa = self.noobaas.get((namespace, name))
        return copy.deepcopy(noobaa) if noobaa is not None else None

    def update_noobaa_status(self, ctx, noobaa):
        ctx.check()
        if self.fail_status_update is not None:
            raise self.fail_status_update
        meta = noobaa["metadata"]
        stored = self.noobaas[(meta["namespace"], meta["name"])]
        stored["status"] = copy.deepcopy(noobaa["status"])
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self.status_writes += 1
        return copy.deepcopy(stored)

    def add_noobaa(self, namespace=NAMESPACE, name=NAME, spec=None, generation=1):
        self.noobaas[(namespace, name)] = {
            "apiVersion": crd.API_VERSION,
            "kind": crd.KIND,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-{name}",
                "generation": generation,
                "resourceVersion": "1",
            },
            "spec": spec or {},
            "status": {},
        }

    def add_pod(self, name, labels, host_ip="192.168.1.10", pod_ip="10.244.0.5", phase="Running"):
        self.pods.append(
            client.V1Pod(
                metadata=client.V1ObjectMeta(name=name, namespace=NAMESPACE, labels=labels),
                status=client.V1PodStatus(phase=phase, host_ip=host_ip, pod_ip=pod_ip),
            )
        )

    def secret_string_data(self, name):
        secret = self.objects[self._key(client.V1Secret, NAMESPACE, name)]
        return {k: base64.b64decode(v).decode("utf-8") for k, v in (secret.data or {}).items()}


class FakeNBClient:
    """Records calls made to the management API."""

    def __init__(self, address, accounts=None, auth_error=False, read_error=None):
        self.address = address
        self.accounts = accounts if accounts is not None else []
        self.auth_error = auth_error
        self.read_error = read_error
        self.auth_token = ""
        self.calls = []

    def set_auth_token(self, token):
        self.auth_token = token or ""

    def read_auth(self, ctx):
        self.calls.append("read_auth")
        if self.read_error is not None:
            raise self.read_error
        return {}

    def create_auth(self, ctx, system, email, password, role="admin"):
        self.calls.append("create_auth")
        if self.auth_error:
            raise RPCError("auth_api", "create_auth", "UNAUTHORIZED", "credentials not found")
        return "token-from-login"

    def create_system(self, ctx, name, email, password):
        self.calls.append("create_system")
        return "token-from-create-system"

    def list_accounts(self, ctx):
        self.calls.append("list_accounts")
        return self.accounts


@pytest.fixture
def ctx():
    return Context(timeout=None)


@pytest.fixture
def cluster():
    fake = FakeCluster()
    fake.add_noobaa()
    fake.add_pod("noobaa-core-0", {"noobaa-core": NAME, "noobaa-mgmt": NAME, "noobaa-s3": NAME})
    return fake


@pytest.fixture
def admin_accounts():
    return [
        Account(email="other@noobaa.io", access_keys=[AccessKey("OTHERKEY", "othersecret")]),
        Account(
            email=crd.ADMIN_ACCOUNT_EMAIL,
            access_keys=[AccessKey("FIRSTKEY", "firstsecret"), AccessKey("SECONDKEY", "secondsecret")],
        ),
        Account(email=crd.ADMIN_ACCOUNT_EMAIL, access_keys=[AccessKey("DUPKEY", "dupsecret")]),
    ]


@pytest.fixture
def nb_factory(admin_accounts):
    """A factory for FakeNBClient that remembers every client it built."""

    class Factory:
        def __init__(self):
            self.clients = []
            self.auth_error = False
            self.read_error = None

        def __call__(self, address):
            nb = FakeNBClient(
                address,
                accounts=admin_accounts,
                auth_error=self.auth_error,
                read_error=self.read_error,
            )
            self.clients.append(nb)
            return nb

        @property
        def last(self):
            return self.clients[-1]

    return Factory()


@pytest.fixture
def events():
    recorded = []

    def recorder(body, event_type, reason, message):
        recorded.append((event_type, reason, message))

    recorder.recorded = recorded
    return recorder
