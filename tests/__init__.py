"""
Booking Assistant Tests

Unit tests run without external services: bookings use the in-memory store
or SQLite (aiosqlite), sessions use the in-memory store, and HTTP
integrations use httpx.MockTransport.

Running Tests:
    # Unit tests
    pytest tests/unit -v

    # One module
    pytest tests/unit/test_booking_lifecycle.py -v

    # Smoke tests against a running instance
    pytest tests/e2e/smoke_test_e2e.py -v

Shared builders (fixed clock, booking factory, fake calendar) live in
tests/factories.py.
"""
