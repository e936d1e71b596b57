"""Core reconciliation logic for a NooBaa system."""

import logging
from collections import namedtuple

import requests
from kubernetes import client
from kubernetes.client.rest import ApiException

from . import crd
from . import templates
from .conditions import set_conditions
from .config import Settings
from .errors import CancelledError, PersistentError, TransientError, combine_errors, is_persistent
from .image import (
    IMAGE_CUSTOM_NAME,
    IMAGE_CUSTOM_VERSION,
    InvalidReferenceError,
    UnsupportedVersionError,
    classify_image,
)
from .k8s import set_controller_reference
from .nb import NBClient, RPCError, find_port, node_port_address
from .secrets import random_base64, random_hex, reset_string_data_from_data

logger = logging.getLogger(__name__)

Request = namedtuple("Request", ["namespace", "name"])


class ReconcileResult(namedtuple("ReconcileResult", ["requeue", "requeue_after", "error"])):
    """Outcome of one reconcile pass."""

    __slots__ = ()

    @classmethod
    def done(cls):
        return cls(False, 0, None)


class _SystemLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['system']}] {msg}", kwargs


class System:
    """Reconciles one NooBaa system toward its desired state.

    Holds the in-memory desired objects for the NooBaa resource and its
    children for the duration of a single pass. Nothing here survives
    between passes; the cluster is the only shared state.
    """

    def __init__(self, namespace, name, cluster, ctx, recorder=None, settings=None, nb_client_factory=NBClient):
        self.request = Request(namespace, name)
        self.cluster = cluster
        self.ctx = ctx
        self.recorder = recorder
        self.settings = settings or Settings()
        self.nb_client_factory = nb_client_factory
        self.nb = None
        self.log = _SystemLogger(logger, {"system": f"{namespace}/{name}"})

        self.noobaa = templates.create_noobaa_manifest(name, namespace)
        self.core_app = templates.create_core_statefulset_manifest(name, namespace)
        self.service_mgmt = templates.create_service_mgmt_manifest(name, namespace)
        self.service_s3 = templates.create_service_s3_manifest(name, namespace)
        self.secret_server = templates.create_secret_manifest(templates.secret_server_name(name), namespace)
        self.secret_op = templates.create_secret_manifest(templates.secret_operator_name(name), namespace)
        self.secret_admin = templates.create_secret_manifest(templates.secret_admin_name(name), namespace)

    @property
    def status(self):
        return self.noobaa.setdefault("status", {})

    @property
    def spec(self):
        return self.noobaa.get("spec") or {}

    def reconcile(self):
        """Run one full pass and decide whether it should be retried.

        A missing NooBaa resource is not an error: it was deleted and the
        cluster garbage collector takes care of the children.
        """
        self.log.info("Start ...")

        try:
            noobaa = self.cluster.get_noobaa(self.ctx, *self.request)
        except Exception as e:
            self.log.warning(f"⏳ Temporary Error: failed reading NooBaa: {e}")
            return ReconcileResult(True, crd.RETRY_DELAY, e)
        if noobaa is None or not noobaa.get("metadata", {}).get("uid"):
            self.log.info("NooBaa not found or already deleted. Skip reconcile.")
            return ReconcileResult.done()
        noobaa.setdefault("spec", {})
        noobaa.setdefault("status", {})
        self.noobaa = noobaa

        err = combine_errors(
            _capture(self.reconcile_system),
            _capture(self.update_status),
        )
        if err is None:
            self.log.info("✅ Done")
            return ReconcileResult.done()
        if not is_persistent(err):
            self.log.warning(f"⏳ Temporary Error: {err} (retry in {crd.RETRY_DELAY}s)")
            return ReconcileResult(True, crd.RETRY_DELAY, err)
        self.log.error(f"❌ Persistent Error: {err}")
        return ReconcileResult(False, 0, err)

    def reconcile_system(self):
        """Run the convergence steps in order, stopping at the first failure."""
        self.set_phase(crd.PHASE_VERIFYING)

        self.check_spec_image()

        try:
            self.set_phase(crd.PHASE_CREATING)

            self.reconcile_secret_server()
            self.core_app = self.reconcile_object(self.core_app, self.set_desired_core_app)
            self.service_mgmt = self.reconcile_object(self.service_mgmt, self.set_desired_service_mgmt)
            self.service_s3 = self.reconcile_object(self.service_s3, self.set_desired_service_s3)

            self.check_service_status(self.service_mgmt, "serviceMgmt", crd.MGMT_HTTPS_PORT)
            self.check_service_status(self.service_s3, "serviceS3", crd.S3_HTTPS_PORT)

            self.set_phase(crd.PHASE_WAITING_TO_CONNECT)

            self.init_nb_client()

            self.set_phase(crd.PHASE_CONFIGURING)

            self.reconcile_secret_op()
            self.reconcile_secret_admin()
        except Exception as e:
            self.set_error_condition(e)
            raise

        self.set_phase(crd.PHASE_READY)
        self.complete()

    def set_phase(self, phase):
        """Update the status phase and the conditions derived from it."""
        self.log.info(f"SetPhase {phase}")
        self.status["phase"] = phase
        conditions = self.status.setdefault("conditions", [])

        reason = phase
        message = phase
        if not conditions:
            self._set_available_condition(reason, message)

        if phase == crd.PHASE_VERIFYING:
            set_conditions(
                conditions,
                {
                    crd.CONDITION_AVAILABLE: crd.CONDITION_TRUE,
                    crd.CONDITION_PROGRESSING: crd.CONDITION_FALSE,
                    crd.CONDITION_DEGRADED: crd.CONDITION_FALSE,
                    crd.CONDITION_UPGRADEABLE: crd.CONDITION_UNKNOWN,
                },
                "ReconcileInit",
                "Initializing noobaa cluster",
            )
        elif phase in (crd.PHASE_CREATING, crd.PHASE_WAITING_TO_CONNECT, crd.PHASE_CONFIGURING):
            self._set_progressing_condition(reason, message)
        elif phase == crd.PHASE_READY:
            self._set_available_condition("ReconcileCompleted", "ReconcileCompleted")

    def _set_available_condition(self, reason, message):
        set_conditions(
            self.status.setdefault("conditions", []),
            {
                crd.CONDITION_AVAILABLE: crd.CONDITION_TRUE,
                crd.CONDITION_PROGRESSING: crd.CONDITION_FALSE,
                crd.CONDITION_DEGRADED: crd.CONDITION_FALSE,
                crd.CONDITION_UPGRADEABLE: crd.CONDITION_TRUE,
            },
            reason,
            message,
        )

    def _set_progressing_condition(self, reason, message):
        set_conditions(
            self.status.setdefault("conditions", []),
            {
                crd.CONDITION_AVAILABLE: crd.CONDITION_FALSE,
                crd.CONDITION_PROGRESSING: crd.CONDITION_TRUE,
                crd.CONDITION_DEGRADED: crd.CONDITION_FALSE,
                crd.CONDITION_UPGRADEABLE: crd.CONDITION_FALSE,
            },
            reason,
            message,
        )

    def set_error_condition(self, err):
        set_conditions(
            self.status.setdefault("conditions", []),
            {
                crd.CONDITION_AVAILABLE: crd.CONDITION_UNKNOWN,
                crd.CONDITION_PROGRESSING: crd.CONDITION_FALSE,
                crd.CONDITION_DEGRADED: crd.CONDITION_TRUE,
                crd.CONDITION_UPGRADEABLE: crd.CONDITION_UNKNOWN,
            },
            "ReconcileFailed",
            f"Error while reconciling: {err}",
        )

    def record_event(self, event_type, reason, message):
        if self.recorder is not None:
            self.recorder(self.noobaa, event_type, reason, message)

    def check_spec_image(self):
        """Validate spec.image and record it as status.actualImage.

        Bad references and unsupported versions are persistent errors,
        since only a spec change can fix them.
        """
        spec_image = self.spec.get("image") or crd.CONTAINER_IMAGE

        try:
            ref, kind = classify_image(spec_image)
        except InvalidReferenceError as e:
            self.log.error(f"Invalid image {spec_image}: {e}")
            self.record_event(crd.EVENT_TYPE_WARNING, crd.EVENT_BAD_IMAGE, f'Invalid image requested "{spec_image}"')
            self.set_phase(crd.PHASE_REJECTED)
            raise PersistentError.wrap(e)
        except UnsupportedVersionError as e:
            self.log.error(
                f'Unsupported image version "{e.ref}" for constraints "{crd.CONTAINER_IMAGE_CONSTRAINT}"'
            )
            self.record_event(
                crd.EVENT_TYPE_WARNING,
                crd.EVENT_BAD_IMAGE,
                f'Unsupported image version requested "{e.ref}" not matching constraints '
                f'"{crd.CONTAINER_IMAGE_CONSTRAINT}"',
            )
            self.set_phase(crd.PHASE_REJECTED)
            raise PersistentError.wrap(e)

        if kind == IMAGE_CUSTOM_VERSION:
            self.log.info(f'Using custom image "{ref}" constraints "{crd.CONTAINER_IMAGE_CONSTRAINT}"')
            self.record_event(
                crd.EVENT_TYPE_NORMAL,
                crd.EVENT_CUSTOM_IMAGE,
                f'Custom image version requested "{ref}", I hope you know what you\'re doing ...',
            )
        elif kind == IMAGE_CUSTOM_NAME:
            self.log.info(f'Using custom image name "{ref}" the default is "{crd.CONTAINER_IMAGE_NAME}"')
            self.record_event(
                crd.EVENT_TYPE_NORMAL,
                crd.EVENT_CUSTOM_IMAGE,
                f'Custom image requested "{ref}", I hope you know what you\'re doing ...',
            )
        else:
            self.log.info(f'Parsed version "{ref.tag}" from image "{ref}"')

        self.status["actualImage"] = spec_image

    def reconcile_secret_server(self):
        """Create the server secret if missing. Existing values are never replaced."""
        namespace, name = self.request
        current = self.cluster.get(self.ctx, client.V1Secret, namespace, self.secret_server.metadata.name)
        if current is not None:
            self.secret_server = reset_string_data_from_data(current)
            return

        string_data = self.secret_server.string_data
        if not string_data.get("jwt"):
            string_data["jwt"] = random_base64(16)
        if not string_data.get("server_secret"):
            string_data["server_secret"] = random_hex(4)
        set_controller_reference(self.noobaa, self.secret_server)
        try:
            created = self.cluster.create(self.ctx, self.secret_server)
        except ApiException as e:
            if e.status != 409:
                raise
            self.log.info(f"Secret {self.secret_server.metadata.name} already exists, skipping")
            return
        self.secret_server = reset_string_data_from_data(created)

    def reconcile_object(self, obj, desired_fn):
        """Create or update a child object owned by the NooBaa resource.

        desired_fn mutates the object it is given into the desired state.
        Returns the object as stored in the cluster.
        """
        kind = type(obj).__name__

        def mutate(target):
            set_controller_reference(self.noobaa, target)
            desired_fn(target)

        try:
            op, result = self.cluster.create_or_update(self.ctx, obj, mutate)
        except Exception as e:
            self.log.error(f"ReconcileObject {kind} {obj.metadata.name} failed: {e}")
            raise
        self.log.info(f"ReconcileObject {kind} {obj.metadata.name} done. op={op}")
        return result

    def set_desired_core_app(self, core_app):
        name = self.request.name
        template_meta = core_app.spec.template.metadata
        if template_meta.labels is None:
            template_meta.labels = {}
        template_meta.labels["noobaa-core"] = name
        template_meta.labels["noobaa-mgmt"] = name
        template_meta.labels["noobaa-s3"] = name
        if core_app.spec.selector.match_labels is None:
            core_app.spec.selector.match_labels = {}
        core_app.spec.selector.match_labels["noobaa-core"] = name
        core_app.spec.service_name = self.service_mgmt.metadata.name

        pod_spec = core_app.spec.template.spec
        pod_spec.service_account_name = self.settings.service_account
        actual_image = self.status.get("actualImage")
        for container in pod_spec.init_containers or []:
            if container.image == crd.NOOBAA_IMAGE_PLACEHOLDER:
                container.image = actual_image
        for container in pod_spec.containers or []:
            if container.image == crd.NOOBAA_IMAGE_PLACEHOLDER:
                container.image = actual_image
            elif container.image == crd.MONGO_IMAGE_PLACEHOLDER:
                container.image = self.spec.get("mongoImage") or crd.MONGO_IMAGE

        pull_secret = self.spec.get("imagePullSecret")
        if pull_secret and pull_secret.get("name"):
            pod_spec.image_pull_secrets = [client.V1LocalObjectReference(name=pull_secret["name"])]
        else:
            pod_spec.image_pull_secrets = None

        # Claims are not owned: the platform forbids blockOwnerDeletion on
        # claims created by the statefulset controller.
        for claim in core_app.spec.volume_claim_templates or []:
            claim.spec.storage_class_name = self.spec.get("storageClassName")

    def set_desired_service_mgmt(self, service):
        service.spec.selector = service.spec.selector or {}
        service.spec.selector["noobaa-mgmt"] = self.request.name

    def set_desired_service_s3(self, service):
        service.spec.selector = service.spec.selector or {}
        service.spec.selector["noobaa-s3"] = self.request.name

    def check_service_status(self, service, status_key, port_name):
        """Collect the addresses a service is reachable on into the status.

        Best effort: a missing address family leaves its list empty.
        """
        status = {
            "nodePorts": [],
            "podPorts": [],
            "internalIP": [],
            "internalDNS": [],
            "externalIP": [],
            "externalDNS": [],
        }
        self.status.setdefault("services", {})[status_key] = status

        port = find_port(service, port_name)
        if port is None:
            self.log.warning(f"Service {service.metadata.name} has no port {port_name}")
            return status
        proto = "https" if port_name.endswith("https") else "http"

        try:
            pods = self.cluster.list(self.ctx, client.V1Pod, self.request.namespace, service.spec.selector)
        except CancelledError:
            raise
        except Exception as e:
            self.log.warning(f"Failed listing pods of service {service.metadata.name}: {e}")
            pods = []
        for pod in pods:
            if pod.status is None or pod.status.phase != "Running":
                continue
            if pod.status.host_ip:
                status["nodePorts"].append(f"{proto}://{pod.status.host_ip}:{port.node_port}")
            if pod.status.pod_ip:
                status["podPorts"].append(f"{proto}://{pod.status.pod_ip}:{port.target_port}")

        if service.spec.cluster_ip:
            status["internalIP"].append(f"{proto}://{service.spec.cluster_ip}:{port.port}")
            status["internalDNS"].append(
                f"{proto}://{service.metadata.name}.{service.metadata.namespace}:{port.port}"
            )

        load_balancer = service.status.load_balancer if service.status else None
        for ingress in (load_balancer.ingress if load_balancer else None) or []:
            if ingress.ip:
                status["externalIP"].append(f"{proto}://{ingress.ip}:{port.port}")
            if ingress.hostname:
                status["externalDNS"].append(f"{proto}://{ingress.hostname}:{port.port}")

        for ip in _external_ips(service.spec):
            status["externalIP"].append(f"{proto}://{ip}:{port.port}")

        self.log.info(f"Collected addresses for {service.metadata.name}: {status}")
        return status

    def init_nb_client(self):
        """Connect to the management API through the first known node port."""
        node_ports = self.status.get("services", {}).get("serviceMgmt", {}).get("nodePorts") or []
        if not node_ports:
            raise TransientError("core pod port not ready yet")

        node_port = node_ports[0]
        node_ip = node_port[node_port.index("://") + 3 : node_port.rindex(":")]
        self.nb = self.nb_client_factory(node_port_address(self.service_mgmt, node_ip, crd.MGMT_HTTPS_PORT))
        self.nb.set_auth_token(self.secret_op.string_data.get("auth_token", ""))
        self.nb.read_auth(self.ctx)

    def reconcile_secret_op(self):
        """Make sure the operator secret holds a working auth token.

        The generated password is stored before the first login attempt so
        it is never lost if the pass fails after this point.
        """
        namespace, _ = self.request
        current = self.cluster.get(self.ctx, client.V1Secret, namespace, self.secret_op.metadata.name)
        exists = current is not None
        if exists:
            self.secret_op = current
        reset_string_data_from_data(self.secret_op)
        string_data = self.secret_op.string_data

        if string_data.get("auth_token"):
            self.nb.set_auth_token(string_data["auth_token"])
            return

        if not string_data.get("email"):
            string_data["email"] = crd.ADMIN_ACCOUNT_EMAIL

        if not string_data.get("password"):
            string_data["password"] = random_base64(16)
            set_controller_reference(self.noobaa, self.secret_op)
            if exists:
                stored = self.cluster.update(self.ctx, self.secret_op)
            else:
                stored = self.cluster.create(self.ctx, self.secret_op)
            self.secret_op = reset_string_data_from_data(stored)
            string_data = self.secret_op.string_data

        email = string_data["email"]
        password = string_data["password"]
        try:
            token = self.nb.create_auth(self.ctx, system=self.request.name, email=email, password=password)
        except (RPCError, requests.RequestException) as e:
            self.log.info(f"Login failed ({e}), creating system {self.request.name}")
            token = self.nb.create_system(self.ctx, name=self.request.name, email=email, password=password)

        string_data["auth_token"] = token
        self.nb.set_auth_token(token)
        self.secret_op = reset_string_data_from_data(self.cluster.update(self.ctx, self.secret_op))

    def reconcile_secret_admin(self):
        """Create the admin secret once, from the operator password and the S3 keys."""
        namespace, name = self.request
        current = self.cluster.get(self.ctx, client.V1Secret, namespace, self.secret_admin.metadata.name)
        if current is not None:
            self.secret_admin = reset_string_data_from_data(current)
            return

        self.secret_admin = templates.create_secret_manifest(
            self.secret_admin.metadata.name,
            namespace,
            {
                "system": name,
                "email": crd.ADMIN_ACCOUNT_EMAIL,
                "password": self.secret_op.string_data["password"],
            },
        )

        self.log.info("listing accounts")
        for account in self.nb.list_accounts(self.ctx):
            if account.email != crd.ADMIN_ACCOUNT_EMAIL:
                continue
            if account.access_keys:
                key = account.access_keys[0]
                self.secret_admin.string_data["AWS_ACCESS_KEY_ID"] = key.access_key
                self.secret_admin.string_data["AWS_SECRET_ACCESS_KEY"] = key.secret_key
            break

        set_controller_reference(self.noobaa, self.secret_admin)
        self.secret_admin = reset_string_data_from_data(self.cluster.create(self.ctx, self.secret_admin))

    def complete(self):
        """Fill the parts of the status that only make sense once Ready."""
        self.status["readme"] = templates.render_readme(self.secret_admin, self.service_mgmt, self.service_s3)
        self.status["accounts"] = {
            "admin": {
                "secretRef": {
                    "name": self.secret_admin.metadata.name,
                    "namespace": self.secret_admin.metadata.namespace,
                }
            }
        }

    def update_status(self):
        """Persist the in-memory status, stamping the observed generation."""
        self.log.info("Updating noobaa status")
        self.status["observedGeneration"] = self.noobaa["metadata"].get("generation")
        self.noobaa = self.cluster.update_noobaa_status(self.ctx, self.noobaa)


def _capture(fn):
    try:
        fn()
    except Exception as e:
        return e
    return None


def _external_ips(spec):
    # kubernetes client 37 renamed external_i_ps to external_ips
    ips = getattr(spec, "external_ips", None)
    if ips is None:
        ips = getattr(spec, "external_i_ps", None)
    return ips or []
