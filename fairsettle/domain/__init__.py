"""Domain layer (pure logic).

- Keep seed derivation, outcome rules and payout math here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI, no Redis, no entropy fetches.
- Prefer deterministic functions (seeds, nonces and time passed in as arguments).
"""
