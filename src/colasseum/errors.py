from __future__ import annotations

from typing import Any, Dict


class ResolutionError(RuntimeError):
    """
    Base for every failure raised by outcome resolution.

    `retryable` means the same call may succeed later (ledger lag, beacon not
    finalized yet). `terminal` means the entry can never be claimed. Errors
    that are neither are developer or configuration mistakes.
    """

    kind = "ResolutionError"
    retryable = False
    terminal = False

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.detail: Dict[str, Any] = detail

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": str(self),
            "retryable": self.retryable,
            "terminal": self.terminal,
            "detail": {k: _jsonable(v) for k, v in self.detail.items()},
        }


def _jsonable(value: Any) -> Any:
    # Field-sized ints do not survive JSON consumers that parse into doubles
    if isinstance(value, int) and not isinstance(value, bool) and value > 2**53:
        return str(value)
    return value


class InvalidDifficulty(ResolutionError):
    kind = "InvalidDifficulty"


class InvalidChanceCount(ResolutionError):
    kind = "InvalidChanceCount"


class OutOfFieldRange(ResolutionError):
    kind = "OutOfFieldRange"


class ThresholdOverflow(OutOfFieldRange):
    kind = "ThresholdOverflow"


class CommitmentMismatch(ResolutionError):
    kind = "CommitmentMismatch"


class SecretUnavailable(ResolutionError):
    kind = "SecretUnavailable"


class EntryClosed(ResolutionError):
    kind = "EntryClosed"
    terminal = True


class TargetInFuture(ResolutionError):
    kind = "TargetInFuture"
    retryable = True


class NoCandidateBlock(ResolutionError):
    kind = "NoCandidateBlock"
    retryable = True


class WindowExceeded(ResolutionError):
    kind = "WindowExceeded"
    terminal = True


class NoRandomnessInWindow(ResolutionError):
    kind = "NoRandomnessInWindow"
    retryable = True


class ResolutionCancelled(ResolutionError):
    kind = "ResolutionCancelled"
    retryable = True


class LedgerError(ResolutionError):
    kind = "LedgerError"
    retryable = True


class ExecutionReverted(LedgerError):
    kind = "ExecutionReverted"


class ProverArtifactsUnavailable(ResolutionError):
    kind = "ProverArtifactsUnavailable"


class ProverInvocationFailed(ResolutionError):
    kind = "ProverInvocationFailed"


class ProverLibraryUnavailable(ProverInvocationFailed):
    kind = "ProverLibraryUnavailable"


class ProverInputInvalid(ProverInvocationFailed):
    kind = "ProverInputInvalid"
