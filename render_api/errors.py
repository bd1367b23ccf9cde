class RenderError(Exception):
    """Base class for errors raised by the render service."""


class ValidationError(RenderError):
    """A submission payload or edit request is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class ProviderError(RenderError):
    """The TTS provider (or another upstream audio source) failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class LeaseExpiredError(RenderError, TimeoutError):
    """The worker's claim on a job was taken back by the reaper."""


class PersistenceError(RenderError):
    """A write to (or read from) the job store failed."""


class TrackNotFound(RenderError):
    pass


class TrackArchived(RenderError):
    pass


class PaymentRequired(RenderError):
    def __init__(self, edit_count: int, fee_cents: int):
        super().__init__(f"Payment required for edit #{edit_count + 1}")
        self.edit_count = edit_count
        self.fee_cents = fee_cents


class EditConflict(RenderError):
    """The track changed between reading and writing an edit."""


class MusicNotFound(RenderError):
    pass


class ClippingRiskWarning(UserWarning):
    """Returned, never raised: a layer's gain plus master exceeds the headroom threshold."""

    def __init__(self, layer: str, total_db: float, threshold_db: float):
        super().__init__(
            f"{layer} gain plus master is {total_db:+.1f} dB, above the {threshold_db:+.1f} dB clipping threshold"
        )
        self.layer = layer
        self.total_db = total_db
        self.threshold_db = threshold_db

    def to_dict(self) -> dict:
        return {"layer": self.layer, "total_db": self.total_db, "message": str(self)}
