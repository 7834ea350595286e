# recofusion/core/errors.py
from __future__ import annotations


class FusionError(Exception):
    """Base class for every error raised by the fusion pipeline."""


class InvalidRequestError(FusionError):
    """The request is missing a field its recommendation type requires."""


class NotFoundError(FusionError):
    """The customer or anchor product does not exist."""

    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class UpstreamUnavailableError(FusionError):
    """A candidate source or the text generator failed or timed out."""


class MalformedOutputError(FusionError):
    """The text generator replied with something that could not be parsed."""
