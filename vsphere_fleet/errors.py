import threading


class FleetError(RuntimeError):
    pass


class ConfigurationError(FleetError):
    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"invalid configuration field {field}")


class LookupFailure(FleetError):
    def __init__(self, *, kind: str, path: str, detail: str = "not found"):
        self.kind = kind
        self.path = path
        self.detail = detail
        super().__init__(f"{kind} lookup failed path={path}: {detail}")


class TaskFailure(FleetError):
    def __init__(
        self,
        *,
        operation: str,
        phase: str,
        target: str,
        detail: str,
        fault: str | None = None,
    ):
        self.operation = operation
        self.phase = phase
        self.target = target
        self.detail = detail
        self.fault = fault
        super().__init__(
            f"{operation} {phase} failed target={target} fault={fault or '-'}: {detail}"
        )


class AddressNotReady(FleetError):
    def __init__(self, instance: str):
        self.instance = instance
        super().__init__(f"could not find an IPv4 address for VM: {instance}")


class OperationCancelled(FleetError):
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} cancelled")


class PartialTeardownError(FleetError):
    def __init__(
        self,
        *,
        instance: str,
        processed: list[str],
        remaining: list[str],
        detail: str,
    ):
        self.instance = instance
        self.processed = processed
        self.remaining = remaining
        self.detail = detail
        super().__init__(
            f"teardown stopped at instance={instance} processed={len(processed)} "
            f"remaining={len(remaining)}: {detail}"
        )


def raise_if_cancelled(cancel: threading.Event | None, operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(operation)
