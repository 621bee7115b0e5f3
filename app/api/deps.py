from fastapi import Depends, HTTPException, Request, status
from app.core.security import get_current_user, TokenData
from app.services.payment_service import PaymentService
from app.services.webhook_service import WebhookService

# Services are built once in the app lifespan and kept on app.state;
# tests swap them by assigning app.state before the client starts.

def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhook_service


async def get_current_active_user(
    current_user: TokenData = Depends(get_current_user),
) -> TokenData:
    return current_user


async def get_current_admin(
    current_user: TokenData = Depends(get_current_active_user),
) -> TokenData:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
