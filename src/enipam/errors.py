"""IPAM engine exception classes."""


class IpamError(Exception):
    """Base exception for IPAM operations."""

    pass


class ValidationError(IpamError):
    """Caller input is malformed (filter syntax, IP, duration, missing args)."""

    pass


class PreconditionError(IpamError):
    """The process is not allowed to run here (not on a cloud instance, not root)."""

    pass


class QuotaError(IpamError):
    """Adapter count or per-adapter address limit is exhausted."""

    pass


class NotFoundError(IpamError):
    """Interface or address is not known to the instance."""

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class TransientCloudError(IpamError):
    """A cloud or metadata call failed; never retried by the engine."""

    pass


class PartialAllocationError(TransientCloudError):
    """The cloud granted fewer addresses than requested."""

    def __init__(self, message: str, granted: list):
        self.granted = granted
        super().__init__(message)


class RegistryError(IpamError):
    """The persisted free-address registry is unreadable or corrupt."""

    pass


class LockContentionError(IpamError):
    """Another process holds the host-wide lock."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"another enipam operation holds the lock {path}")


class BatchError(IpamError):
    """
    One or more items of a multi-item operation failed.

    ``failures`` maps each failed item to its error; ``done`` holds the
    results of the items that went through.
    """

    def __init__(
        self,
        operation: str,
        failures: dict[str, IpamError],
        done: list | None = None,
    ):
        self.operation = operation
        self.failures = failures
        self.done = done or []
        details = "; ".join(f"{item}: {err}" for item, err in failures.items())
        super().__init__(f"{operation} failed for {len(failures)} item(s): {details}")
