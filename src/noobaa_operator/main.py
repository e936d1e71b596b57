"""Main operator entrypoint using Kopf."""

import logging

import kopf
import urllib3

from . import crd, k8s
from .config import Settings
from .context import Context
from .reconcile import System

operator_settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=operator_settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_):
    """Configure the operator."""
    k8s.load_config()

    # Keep kopf's bookkeeping out of status, which the reconciler owns.
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=crd.GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=crd.GROUP)
    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = operator_settings.request_timeout

    # The management API serves a self-signed certificate.
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def record_event(body, event_type, reason, message):
    kopf.event(body, type=event_type, reason=reason, message=message)


def run_reconcile(namespace, name, cluster=None, stopped=None):
    """Run one reconcile pass for the NooBaa system namespace/name."""
    ctx = Context(
        timeout=operator_settings.reconcile_timeout,
        request_timeout=operator_settings.request_timeout,
        stopped=stopped,
    )
    system = System(
        namespace,
        name,
        cluster or k8s.Cluster(),
        ctx,
        recorder=record_event,
        settings=operator_settings,
    )
    return system.reconcile()


@kopf.on.create(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.update(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.resume(crd.GROUP, crd.VERSION, crd.PLURAL)
def noobaa_handler(name, namespace, **kwargs):
    """Handle NooBaa create/update/resume events."""
    logger.info(f"Handling NooBaa {name} in namespace {namespace}")

    result = run_reconcile(namespace, name)
    if result.error is None:
        return
    if result.requeue:
        raise kopf.TemporaryError(f"Reconciliation not complete: {result.error}", delay=result.requeue_after)
    raise kopf.PermanentError(str(result.error))


@kopf.timer(
    crd.GROUP,
    crd.VERSION,
    crd.PLURAL,
    interval=operator_settings.resync_interval,
    idle=operator_settings.resync_interval,
)
def noobaa_timer(name, namespace, meta, status, stopped=None, **kwargs):
    """Periodic reconciliation timer.

    A system rejected for its current generation waits for a spec change.
    """
    phase = status.get("phase")
    if phase == crd.PHASE_REJECTED and status.get("observedGeneration") == meta.get("generation"):
        logger.debug(f"Skipping timer reconciliation for rejected NooBaa {name}")
        return
    logger.debug(f"Timer reconciliation for NooBaa {name} (phase: {phase})")
    result = run_reconcile(namespace, name, stopped=stopped)
    if result.error is not None:
        logger.warning(f"Timer reconciliation for NooBaa {name} not complete: {result.error}")


@kopf.on.delete(crd.GROUP, crd.VERSION, crd.PLURAL, optional=True)
def noobaa_delete(name, namespace, **kwargs):
    """Handle NooBaa deletion."""
    # Owner references cascade the deletion of the children.
    logger.info(f"NooBaa {name} in namespace {namespace} deleted")


def run():
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    run()
