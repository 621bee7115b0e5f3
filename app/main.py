import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.exceptions import BillingError
from app.core.logging_config import configure_logging
from app.core.supabase import db
from app.api.api import api_router
from app.schemas.common import ErrorDetail, ErrorResponse
from app.services.gateway import RazorpayGateway
from app.services.order_store import InMemoryOrderStore, SupabaseOrderStore
from app.services.payment_service import PaymentService
from app.services.user_store import InMemoryUserStore, SupabaseUserStore
from app.services.webhook_service import WebhookService

configure_logging()
logger = logging.getLogger(__name__)


def build_services(app: FastAPI) -> None:
    """Construct the billing services once and hang them off app.state."""
    if settings.STORAGE_BACKEND == "memory":
        logger.warning("STORAGE_BACKEND=memory: payment records will not survive a restart.")
        orders, users = InMemoryOrderStore(), InMemoryUserStore()
    else:
        orders, users = SupabaseOrderStore(), SupabaseUserStore()

    app.state.payment_service = PaymentService(orders=orders, users=users, gateway=RazorpayGateway())
    app.state.webhook_service = WebhookService(orders=orders, users=users)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.STORAGE_BACKEND != "memory":
        try:
            await db.get_service_client()
            logger.info("Supabase client initialized.")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")

    # Tests install their own services before startup.
    if not hasattr(app.state, "payment_service"):
        build_services(app)
    yield
    db.reset()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan
    )

    # CORS Middleware
    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(BillingError)
    async def billing_exception_handler(request: Request, exc: BillingError):
        logger.error(f"Unhandled billing error on {request.url.path}: {exc.message}")
        body = ErrorResponse(error=ErrorDetail(code=exc.status_code, message=exc.message))
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    # Global Exception Handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"message": "Internal Server Error", "detail": str(exc)},
        )

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    @app.post("/")
    async def handle_payment_return(request: Request):
        # Razorpay posts the checkout result here when configured as callback_url.
        try:
            form_data = await request.form()
            params = {
                "razorpay_order_id": form_data.get("razorpay_order_id"),
                "razorpay_payment_id": form_data.get("razorpay_payment_id"),
                "razorpay_signature": form_data.get("razorpay_signature")
            }

            if not all(params.values()):
                return JSONResponse(status_code=400, content={"message": "Missing payment parameters"})

            result = await request.app.state.payment_service.verify_payment(
                params["razorpay_order_id"],
                params["razorpay_payment_id"],
                params["razorpay_signature"],
            )
            return JSONResponse(content={"message": "Payment processed successfully", "status": "verified", "details": result.model_dump()})

        except BillingError as e:
            logger.error(f"Error handling payment return at root: {e.message}")
            return JSONResponse(status_code=400, content={"message": "Payment verification failed", "detail": e.message})

    return app


app = create_app()
