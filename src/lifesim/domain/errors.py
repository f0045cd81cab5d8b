class LifeSimError(Exception):
    code = "error"


class ValidationError(LifeSimError):
    code = "invalid"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class InsufficientFundsError(LifeSimError):
    code = "insufficient_funds"


class InvalidTransitionError(LifeSimError):
    code = "invalid_transition"


class RemoteStoreError(LifeSimError):
    code = "remote_error"


class RemoteFunctionNotFound(RemoteStoreError):
    code = "function_not_found"


class TransactionsUnsupported(RemoteStoreError):
    code = "transactions_unsupported"


class RemoteTimeoutError(RemoteStoreError):
    code = "timeout"
