"""
Booking Module

Availability, conflict checks, frequency limits and the booking lifecycle
for the single bookable resource.

Modules here take their configuration through constructors; wiring against
application settings lives in app.core.services.

Usage:
    from app.core.services import get_booking_manager

    manager = get_booking_manager()
    booking = await manager.create(request)
"""
