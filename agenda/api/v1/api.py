from fastapi import APIRouter

from agenda.api.v1.endpoints import (
    addresses,
    appointments,
    availability,
    board,
    booking,
    events,
)

api_router = APIRouter()

# Availability engine
api_router.include_router(
    availability.router, prefix="/availability", tags=["availability"]
)

# Calendar store
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)
api_router.include_router(appointments.blocks_router, prefix="/blocks", tags=["blocks"])

# Customer booking flow
api_router.include_router(booking.router, prefix="/booking", tags=["booking"])

# Business schedule board
api_router.include_router(board.router, prefix="/board", tags=["board"])

# Live updates
api_router.include_router(events.router, prefix="/events", tags=["events"])

# Address book
api_router.include_router(addresses.router, prefix="/customers", tags=["customers"])
