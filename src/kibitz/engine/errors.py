"""Failures surfaced on pending engine requests."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine-side request failures."""


class SearchAborted(EngineError):
    """The search was stopped before any evaluation line arrived."""


class EngineCommunicationFailure(EngineError):
    """The engine process or its channel failed; the client is unusable."""


class EngineShutdown(EngineError):
    """The client was shut down while the request was pending."""


class EngineTimeout(EngineError):
    """The search did not finish within the configured timeout."""
