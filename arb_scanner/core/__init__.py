"""Core mathematics and primitives for the arbitrage scanner.

This package contains pure, provider-agnostic building blocks:

- ``odds_math``: implied probability, market hold, fair price, EV
- ``arbitrage``: arbitrage detection and equal-payout stake split
- ``kelly``: fractional Kelly stake sizing
- ``ttl_cache``: thread-safe expiring key/value store
- ``sport_config``: sport categories and league keys for The Odds API
- ``errors``: exception taxonomy shared by core and services

Nothing in this package imports from ``arb_scanner.services`` or
``arb_scanner.models``.  Everything except ``ttl_cache`` is side-effect-free.
"""
