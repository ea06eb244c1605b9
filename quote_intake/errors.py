"""Error taxonomy for the intake pipeline.

Only ``InputError`` is meant to reach the caller. The other kinds are caught
where they happen and turned into structured status (a failed
``ExtractionResult``, a resolver warning, a ledger write outcome).
"""


class IntakeError(Exception):
    """Base class for all intake errors."""


class InputError(IntakeError):
    """Raw input is empty or malformed; raised before fingerprinting."""


class ExtractionStrategyError(IntakeError):
    """A strategy dependency failed or timed out."""

    def __init__(self, strategy: str, detail: str):
        super().__init__(f"{strategy}: {detail}")
        self.strategy = strategy
        self.detail = detail


class ResolutionStageError(IntakeError):
    """One client resolver stage could not complete."""

    def __init__(self, stage: str, detail: str):
        super().__init__(f"{stage}: {detail}")
        self.stage = stage
        self.detail = detail


class LedgerConflict(IntakeError):
    """Another writer already recorded the same fingerprint."""

    def __init__(self, existing_ref: str | None):
        super().__init__(f"fingerprint already recorded as {existing_ref!r}")
        self.existing_ref = existing_ref


class DirectoryError(IntakeError):
    """The external customer directory could not be reached or answered badly."""
