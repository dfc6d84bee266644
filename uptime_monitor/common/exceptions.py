"""
Custom Exception Classes for the Uptime Monitor

Hierarchical exception structure. Every per-machine and per-record step
catches MonitorError subclasses, logs them by category and moves on.
"""


class MonitorError(Exception):
    """Base exception for all uptime monitor errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(MonitorError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class RegistryLookupError(MonitorError):
    """A machine, customer or timezone could not be resolved"""

    def __init__(self, message: str, entity_id: str | None = None):
        self.entity_id = entity_id
        super().__init__(f"Lookup Error: {message}", recoverable=True)


class MachineLookupError(RegistryLookupError):
    """Machine missing, or missing its device id / customer binding"""

    def __init__(self, message: str, machine_id: str | None = None):
        self.machine_id = machine_id
        super().__init__(message, entity_id=machine_id)


class CustomerNotFoundError(RegistryLookupError):
    """Customer referenced by a machine or downtime record does not exist"""

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"customer {customer_id} not found", entity_id=customer_id)


class TimezoneLookupError(RegistryLookupError):
    """Customer timezone is not a known IANA name"""

    def __init__(self, timezone_name: str, customer_id: str | None = None):
        self.timezone_name = timezone_name
        self.customer_id = customer_id
        super().__init__(
            f"unknown timezone '{timezone_name}'"
            + (f" for customer {customer_id}" if customer_id else ""),
            entity_id=customer_id,
        )


class StorageError(MonitorError):
    """Persistence layer errors"""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(f"Storage Error: {message}", recoverable=True)


class StorageTimeoutError(StorageError):
    """A storage call exceeded the caller-enforced timeout"""

    def __init__(self, operation: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"{operation} timed out after {timeout_s:.1f}s", operation)


class InvariantViolationError(MonitorError):
    """Persisted state breaks a ledger invariant (e.g. two active records per key)"""

    def __init__(self, message: str, key: tuple | None = None):
        self.key = key
        super().__init__(f"Invariant violated: {message}", recoverable=False)


class ServiceError(MonitorError):
    """Service lifecycle errors"""

    def __init__(self, message: str, service_name: str, recoverable: bool = True):
        self.service_name = service_name
        super().__init__(f"Service [{service_name}]: {message}", recoverable)
