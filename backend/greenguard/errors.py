"""
errors.py

Domain exceptions. Routes translate them to HTTP status codes; the
orchestrator turns anything raised inside a run into a system-error verdict.
"""
from __future__ import annotations


class GreenGuardError(Exception):
    """Base class for every error raised by the audit pipeline."""


class InvalidFacilityRules(GreenGuardError):
    """Facility rules violate an invariant (e.g. non-positive max load)."""


class ReadingNotFound(GreenGuardError):
    pass


class FacilityNotFound(GreenGuardError):
    pass


class AuditNotFound(GreenGuardError):
    pass


class HumanActionAlreadySet(GreenGuardError):
    """A reviewer action is terminal and can only be recorded once."""


class ProviderError(GreenGuardError):
    """A live context provider failed, timed out or is not configured."""


class AIResponseError(GreenGuardError):
    """The AI provider answered with something that is not a valid verdict."""
