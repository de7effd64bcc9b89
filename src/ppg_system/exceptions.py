"""Custom exception hierarchy for the PPG vital-signs system."""


class PPGSystemError(Exception):
    """Base exception for all PPG system errors."""


class InsufficientDataError(PPGSystemError):
    """Raised when a buffer is too short for a computation."""

    def __init__(self, required: int, available: int, what: str = "samples") -> None:
        self.required = required
        self.available = available
        super().__init__(f"Need at least {required} {what}, got {available}")


class OutOfPhysiologicalRangeError(PPGSystemError):
    """Raised when a computed vital falls outside its hard bounds."""

    def __init__(self, vital: str, value: float, low: float, high: float) -> None:
        self.vital = vital
        self.value = value
        self.low = low
        self.high = high
        super().__init__(f"{vital}={value} outside [{low}, {high}]")


class AcceleratorUnavailableError(PPGSystemError):
    """Raised when an enhancement backend cannot serve a request."""


class AcceleratorTimeoutError(AcceleratorUnavailableError):
    """Raised when an offloaded enhancement request exceeds its timeout."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Enhancement request timed out after {timeout_s:.3f}s")


class LowSignalQualityError(PPGSystemError):
    """Raised when the upstream quality gate rejects a sample."""


class CrossValidationError(PPGSystemError):
    """Raised when measurements cannot be reconciled."""


class CalibrationError(PPGSystemError):
    """Raised when a calibration reference cannot be used."""


class ConfigurationError(PPGSystemError):
    """Raised when components are configured inconsistently."""


class ProcessorStateError(PPGSystemError):
    """Raised when the processor is used outside its lifecycle."""
