from fastapi import APIRouter

from api.routes import alerts, auth, consultations, daily_reports, events, prescriptions

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"], prefix="/auth")
api_router.include_router(daily_reports.router, tags=["daily-reports"])
api_router.include_router(alerts.router, tags=["alerts"], prefix="/alerts")
api_router.include_router(consultations.router, tags=["consultations"], prefix="/consultations")
api_router.include_router(prescriptions.router, tags=["prescriptions"])
api_router.include_router(events.router, tags=["events"], prefix="/events")
