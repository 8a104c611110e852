from fastapi import APIRouter

from ridefleet.api.routes import ws
from ridefleet.modules.auth import api as auth

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(ws.router, tags=["realtime"])
