"""
Face API exception definitions.

Every error is raised synchronously to the caller of the triggering operation
and is never retried internally. Zero detected faces is not an error.
"""


class FaceApiError(Exception):
    """Base class for all face API errors."""

    pass


class InvalidArgumentError(FaceApiError, ValueError):
    """Raised when a required argument is missing or malformed."""

    pass


class DescriptorDimensionError(InvalidArgumentError):
    """Raised when descriptors of different dimensionality are compared."""

    pass


class ModelLoadError(FaceApiError, RuntimeError):
    """Raised when the pretrained weights are missing or cannot be loaded."""

    pass


class ImageReadError(FaceApiError, ValueError):
    """Raised when an input image cannot be read or decoded."""

    pass


class ImageEncodeError(FaceApiError, RuntimeError):
    """Raised when an annotated image cannot be encoded to JPEG."""

    pass
