"""Exception taxonomy for the arbitrage scanner.

Two families exist:

* :class:`InputValidationError`: the caller handed the engine something it
  cannot work with (non-positive price, fewer than two bets, unknown market).
  Always surfaced to the immediate caller.
* :class:`ProviderFetchError`: a data source could not deliver a validated
  snapshot (network failure, non-2xx status, timeout, schema mismatch).
  Caught at the multi-source merge boundary and downgraded to "this source
  contributed nothing".  Only :class:`AllSourcesFailedError` reaches the
  presentation layer.

A cache miss and a market without arbitrage are *not* errors.
"""

from __future__ import annotations

from typing import Optional


class InputValidationError(ValueError):
    """Malformed input to a pure engine function."""


class InvalidPriceError(InputValidationError):
    """A decimal price that is not a finite number greater than zero."""

    def __init__(self, price: object, reason: str = "must be a finite number > 0"):
        self.price = price
        super().__init__(f"Invalid decimal price {price!r}: {reason}.")


class ProviderFetchError(RuntimeError):
    """A provider failed to return a complete, validated snapshot."""

    def __init__(self, provider: str, message: str, *, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class AllSourcesFailedError(ProviderFetchError):
    """Every enabled data source failed during a single merge call."""

    def __init__(self, failures: dict[str, str]):
        self.failures = dict(failures)
        detail = "; ".join(f"{name}: {msg}" for name, msg in self.failures.items())
        super().__init__("aggregator", f"all enabled sources failed ({detail})")
