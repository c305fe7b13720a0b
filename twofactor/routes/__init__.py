from fastapi import APIRouter

from twofactor.routes import challenge, enrollment, management

router = APIRouter(prefix="/api/v1/2fa")
router.include_router(management.router)
router.include_router(enrollment.router)
router.include_router(challenge.router)
