"""
Error types raised by the covenant builder and the funding workflow.

Every stage either succeeds or raises one of these; nothing is retried
silently and already broadcast transactions are never rolled back.
"""


class CovenantError(Exception):
    """Base class for all simple-ctv errors."""


class ConfigError(CovenantError):
    """Unknown network, script variant or malformed configuration value."""


class EncodingError(CovenantError):
    """Output or script cannot be consensus-encoded (raised before any network call)."""


class DerivationError(CovenantError):
    """Taproot tree or control block construction failed."""


class VerificationError(CovenantError):
    """A script-path spend does not satisfy the committed leaf."""


class StageError(CovenantError):
    """A workflow step was called before the step it depends on."""


class NetworkError(CovenantError):
    """RPC, funding or broadcast failure."""


class RPCError(NetworkError):
    """JSON-RPC call returned an error object."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC Error {code}: {message}")


class ConfirmationTimeout(NetworkError):
    """Transaction did not reach the required confirmations before the deadline."""

    def __init__(self, txid: str, waited: float):
        self.txid = txid
        self.waited = waited
        super().__init__(f"Transaction {txid} not confirmed after {waited:.0f}s")


class WaitCancelled(NetworkError):
    """Confirmation wait was cancelled by the caller."""
