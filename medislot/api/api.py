from fastapi import APIRouter
from medislot.api.v1 import appointments, doctor_time_slots

api_router = APIRouter()

api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(doctor_time_slots.router, prefix="/doctor-time-slots", tags=["doctor-time-slots"])
