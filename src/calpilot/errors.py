"""Summary: Error taxonomy for CalPilot scheduling intelligence.

Importance: Gives callers structured, renderable failures instead of bare strings.
Alternatives: Raise ValueError/RuntimeError everywhere and parse messages.
"""

from __future__ import annotations

from dataclasses import dataclass


class SchedulingError(Exception):
    """Summary: Base class for caller-visible scheduling failures.

    Importance: Lets the CLI and API catch every domain error in one place.
    Alternatives: Catch each concrete error type at every call site.
    """


class ProviderError(RuntimeError):
    """Summary: A single LLM provider call failed.

    Importance: Marks transient provider failures that the router may fall back from.
    Alternatives: Let urllib exceptions leak out of the adapters.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeout(ProviderError):
    """Summary: A provider call exceeded its timeout."""


class PrivacyPolicyViolation(SchedulingError):
    """Summary: A cloud provider was selected while privacy policy forbids it.

    Importance: Privacy is a policy boundary and must never be downgraded silently.
    Alternatives: Quietly switch to a local provider.
    """

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"Provider {provider} is not allowed: {reason}")
        self.provider = provider
        self.reason = reason


class BudgetExceeded(SchedulingError):
    """Summary: A cloud call would exceed the monthly budget.

    Importance: Raised before any network call so no cost is incurred.
    Alternatives: Check the budget after the call and report overspend.
    """

    def __init__(self, provider: str, limit: float, spent: float) -> None:
        super().__init__(
            f"Monthly budget exceeded for {provider}: spent ${spent:.2f} of ${limit:.2f}"
        )
        self.provider = provider
        self.limit = limit
        self.spent = spent


@dataclass(frozen=True)
class ProviderAttempt:
    """Summary: One provider attempt inside a fallback chain.

    Importance: Lets AllProvidersFailed explain what happened at each hop.
    Alternatives: Join every cause into a single message string.
    """

    provider: str
    cause: str
    attempted: bool = True


class AllProvidersFailed(SchedulingError):
    """Summary: Every eligible provider in the fallback chain failed.

    Importance: Carries the per-provider causes for actionable error output.
    Alternatives: Re-raise only the last provider error.
    """

    def __init__(self, attempts: list[ProviderAttempt]) -> None:
        causes = "; ".join(f"{item.provider}: {item.cause}" for item in attempts)
        super().__init__(f"All providers failed ({causes or 'no eligible providers'})")
        self.attempts = list(attempts)


class NoEventsFound(SchedulingError):
    """Summary: The analysis window contained no calendar events.

    Importance: Recoverable condition the caller decides how to present.
    Alternatives: Return an empty summary with zeroed statistics.
    """

    def __init__(self, lookback_days: int) -> None:
        super().__init__(f"No events found in the last {lookback_days} days")
        self.lookback_days = lookback_days


class FeatureDisabled(SchedulingError):
    """Summary: A gated capability was invoked while its toggle is off."""

    def __init__(self, feature: str) -> None:
        super().__init__(f"Feature '{feature}' is disabled in the AI configuration")
        self.feature = feature


class CollaboratorUnavailable(SchedulingError):
    """Summary: The calendar collaborator failed.

    Importance: Fatal to the current request; facts cannot be computed without it.
    Alternatives: Retry silently or proceed with an empty calendar.
    """

    def __init__(self, operation: str, cause: str) -> None:
        super().__init__(f"Calendar provider failed during {operation}: {cause}")
        self.operation = operation
        self.cause = cause


class EventNotFound(SchedulingError):
    """Summary: A referenced calendar event does not exist in the search window."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class SlotConflict(SchedulingError):
    """Summary: A write was refused because the slot has blocking conflicts."""

    def __init__(self, kinds: list[str]) -> None:
        super().__init__(f"Slot has blocking conflicts: {', '.join(kinds)}")
        self.kinds = list(kinds)


class RequestCancelled(SchedulingError):
    """Summary: The caller aborted the request."""


class IntentParseError(SchedulingError):
    """Summary: A natural-language request could not be turned into a candidate."""
