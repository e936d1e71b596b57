"""Kubernetes client helpers."""

import copy
import logging

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from . import crd
from .errors import OwnershipError

logger = logging.getLogger(__name__)

OP_CREATED = "created"
OP_UPDATED = "updated"
OP_UNCHANGED = "unchanged"

# Model class -> (api group attribute, resource name used in method names)
_KINDS = {
    client.V1StatefulSet: ("apps_v1", "stateful_set"),
    client.V1Service: ("core_v1", "service"),
    client.V1Secret: ("core_v1", "secret"),
    client.V1Pod: ("core_v1", "pod"),
}


def load_config():
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


def set_controller_reference(owner, obj):
    """Point obj at its owning NooBaa resource.

    Only a back reference is kept on the child; the platform garbage
    collector uses it to cascade deletion.
    """
    owner_meta = owner["metadata"]
    ref = client.V1OwnerReference(
        api_version=owner.get("apiVersion", crd.API_VERSION),
        kind=owner.get("kind", crd.KIND),
        name=owner_meta["name"],
        uid=owner_meta["uid"],
        controller=True,
        block_owner_deletion=True,
    )
    refs = list(obj.metadata.owner_references or [])
    for existing in refs:
        if existing.controller and existing.uid != ref.uid:
            raise OwnershipError(
                f"{obj.metadata.name} is already controlled by "
                f"{existing.kind} {existing.name}"
            )
    for i, existing in enumerate(refs):
        if existing.uid == ref.uid:
            refs[i] = ref
            break
    else:
        refs.append(ref)
    obj.metadata.owner_references = refs
    return obj


class Cluster:
    """Read/write access to the cluster objects of a NooBaa system.

    Every call takes the reconcile Context, checked before the request and
    used for the request timeout.
    """

    def __init__(self, core_v1=None, apps_v1=None, custom_api=None):
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    def _method(self, obj_or_cls, verb):
        cls = obj_or_cls if isinstance(obj_or_cls, type) else type(obj_or_cls)
        try:
            api_attr, resource = _KINDS[cls]
        except KeyError:
            raise TypeError(f"Unsupported kind {cls.__name__}") from None
        return getattr(getattr(self, api_attr), f"{verb}_namespaced_{resource}")

    def get(self, ctx, cls, namespace, name):
        """Read an object, returning None when it does not exist."""
        read = self._method(cls, "read")
        try:
            return read(name=name, namespace=namespace, _request_timeout=ctx.request_timeout())
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def list(self, ctx, cls, namespace, selector=None):
        """List objects in a namespace matching a label selector dict."""
        list_fn = self._method(cls, "list")
        label_selector = ",".join(f"{k}={v}" for k, v in sorted((selector or {}).items()))
        result = list_fn(
            namespace=namespace,
            label_selector=label_selector,
            _request_timeout=ctx.request_timeout(),
        )
        return list(result.items or [])

    def create(self, ctx, obj):
        create = self._method(obj, "create")
        return create(
            namespace=obj.metadata.namespace,
            body=obj,
            _request_timeout=ctx.request_timeout(),
        )

    def update(self, ctx, obj):
        """Replace an object; the resource version guards concurrent writes."""
        replace = self._method(obj, "replace")
        return replace(
            name=obj.metadata.name,
            namespace=obj.metadata.namespace,
            body=obj,
            _request_timeout=ctx.request_timeout(),
        )

    def create_or_update(self, ctx, obj, mutate):
        """Create obj or update the live object, applying mutate either way.

        Returns (op, object) where op is one of created, updated, unchanged.
        An update is only sent when mutate changed the live object.
        """
        current = self.get(ctx, type(obj), obj.metadata.namespace, obj.metadata.name)
        if current is None:
            mutate(obj)
            return OP_CREATED, self.create(ctx, obj)

        before = copy.deepcopy(current)
        mutate(current)
        if current == before:
            return OP_UNCHANGED, current
        return OP_UPDATED, self.update(ctx, current)

    def get_noobaa(self, ctx, namespace, name):
        """Read a NooBaa resource, returning None when it does not exist."""
        try:
            return self.custom_api.get_namespaced_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                namespace=namespace,
                plural=crd.PLURAL,
                name=name,
                _request_timeout=ctx.request_timeout(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def update_noobaa_status(self, ctx, noobaa):
        """Write the status subresource of a NooBaa resource."""
        meta = noobaa["metadata"]
        return self.custom_api.replace_namespaced_custom_object_status(
            group=crd.GROUP,
            version=crd.VERSION,
            namespace=meta["namespace"],
            plural=crd.PLURAL,
            name=meta["name"],
            body=noobaa,
            _request_timeout=ctx.request_timeout(),
        )
