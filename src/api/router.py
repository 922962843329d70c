from fastapi import APIRouter

from src.api.bookings import router as bookings_router

api_router = APIRouter()
api_router.include_router(bookings_router)
