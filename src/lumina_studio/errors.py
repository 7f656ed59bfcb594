"""Error taxonomy shared by the dispatcher, normalizer, orchestrator, and store."""

from __future__ import annotations


class LuminaError(RuntimeError):
    """Base class for every failure raised by lumina_studio."""


class MissingCredentialError(LuminaError):
    """No API key could be resolved for the remote model service."""


class RemoteCallError(LuminaError):
    """The remote model call failed in transport or returned an error status."""


class UnsupportedModelError(LuminaError):
    """The requested model family does not support the requested feature."""


class EmptyResponseError(LuminaError):
    """The remote call succeeded but carried no usable content."""


class StoreUnavailableError(LuminaError):
    """The local artifact database could not be opened, read, or written."""
