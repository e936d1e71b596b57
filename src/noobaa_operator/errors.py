"""Reconcile error taxonomy.

Every failure is either transient (retried after a fixed delay) or
persistent (not retried until the resource changes). The ``persistent``
tag on ``ReconcileError`` is the only thing the reconcile driver looks at;
any exception that is not a ``ReconcileError`` counts as transient.
"""


class ReconcileError(Exception):
    """Base exception for reconcile failures.

    Attributes:
        persistent: True when retrying cannot fix the failure.
        cause: The underlying exception, if this one wraps another.
    """

    persistent = False

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.cause = cause


class TransientError(ReconcileError):
    """A failure that is expected to go away by retrying."""


class PersistentError(ReconcileError):
    """A failure that needs a spec change before retrying makes sense."""

    persistent = True

    @classmethod
    def wrap(cls, err):
        """Wrap an existing exception as a persistent error."""
        if err is None:
            raise ValueError("PersistentError.wrap expects an exception, got None")
        return cls(str(err), cause=err)


class CancelledError(TransientError):
    """Raised when the reconcile context is cancelled or its deadline passed."""


class OwnershipError(TransientError):
    """Raised when a child object is already controlled by another owner."""


def is_persistent(err):
    """Return True if err is tagged persistent."""
    return bool(getattr(err, "persistent", False))


def combine_errors(*errs):
    """Combine errors into one.

    Returns the first non-None error, except that a persistent error
    displaces a transient one. Between errors of the same kind the
    first one wins.
    """
    combined = None
    for err in errs:
        if err is None:
            continue
        if combined is None:
            combined = err
            continue
        if is_persistent(err) and not is_persistent(combined):
            combined = err
    return combined
