import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import engine
from .errors import StorefrontError
from .models import Base
from .routers import cart_router, order_router, product_router

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(
    title="Storefront Service",
    description="Cart, stock validation and checkout for the storefront",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create database tables
Base.metadata.create_all(bind=engine)

app.include_router(product_router.router)
app.include_router(cart_router.router)
app.include_router(order_router.router)


@app.exception_handler(StorefrontError)
def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    headers = {"Retry-After": "5"} if exc.retryable else None
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {**exc.to_detail(), "retryable": exc.retryable}},
        headers=headers,
    )


@app.get("/")
def root():
    return {
        "service": "Storefront Service",
        "status": "running",
        "version": "1.0.0",
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "storefront-service",
    }
