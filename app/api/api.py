from fastapi import APIRouter
from app.api.endpoints import billing

api_router = APIRouter()
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])

@api_router.get("/health", tags=["health"])
async def health_check():
    return {"status": "ok"}
