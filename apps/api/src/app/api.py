from fastapi import APIRouter

from app.modules.auth import router as auth_router
from app.modules.background_verifications import router as bg_verifications_router
from app.modules.claims.router import router as claims_router
from app.modules.verifications import invite_router as verifier_invites_router
from app.modules.verifications import router as verifications_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])

api_router.include_router(claims_router, prefix="/claims", tags=["Claims"])

api_router.include_router(
    verifier_invites_router, prefix="/verifier-invites", tags=["Verifier Invites"]
)

api_router.include_router(
    verifications_router, prefix="/verifications", tags=["Verifications"]
)

api_router.include_router(
    bg_verifications_router,
    prefix="/bg-verifications",
    tags=["Background Verifications"],
)
