"""Error taxonomy for the image-to-prediction pipeline."""


class ParticleVisionError(Exception):
    """Base class for every failure raised by the pipeline services."""


class DecodeError(ParticleVisionError):
    """The uploaded bytes could not be decoded as an image."""


class ModelUnavailable(ParticleVisionError):
    """The inference runtime failed to load or crashed during a forward pass."""


class InvariantViolation(ParticleVisionError):
    """A value broke a record contract (confidence range, label vocabulary, …)."""


class StoreUnavailable(ParticleVisionError):
    """The prediction store could not be reached or returned unreadable data."""


class BlobUnavailable(ParticleVisionError):
    """The blob store failed to persist an upload."""
