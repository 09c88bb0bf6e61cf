"""
Unity IAP Validator - FastAPI Application

Validates Unity IAP receipts against the App Store and Google Play.
"""
from fastapi import FastAPI
import argparse
import structlog
import logging

from unity_iap.config import settings
from unity_iap.decoder import decode_receipt, decode_payload
from unity_iap.models import Platform
from unity_iap.routes import router as receipts_router


# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.log_level.upper(), logging.INFO)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Unity IAP receipt validation service",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None
)


# Include routers
app.include_router(receipts_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "0.1.0",
        "status": "operational",
        "environment": settings.environment
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "apple_configured": bool(settings.apple_shared_secret),
        "google_configured": bool(settings.google_service_account_json)
    }


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug
    )


# A Google Play subscription receipt as delivered by Unity IAP
SAMPLE_RECEIPT = r'''{"Payload":"{\"json\":\"{\\\"orderId\\\":\\\"GPA.3349-5045-3269-66812\\\",\\\"packageName\\\":\\\"com.gameroasters.stack4\\\",\\\"productId\\\":\\\"com.gameroasters.s4.google.vip\\\",\\\"purchaseTime\\\":1625845453934,\\\"purchaseState\\\":0,\\\"purchaseToken\\\":\\\"pmkoeeioabjblfehjkdjdnig.AO-J1OzMAMUCsvmBp-Xg0_2Wa1zODlGjRnpjmTTHzcCLi1-tU1gndPCYGuKGz5fa-9pdWHBa816A6gTxYgFMJb9HTCIfADA894GEKVif4XsU5wBKCwLxw1w\\\",\\\"autoRenewing\\\":true,\\\"acknowledged\\\":false}\",\"signature\":\"V2sHMm4h5WcE8klV7lgA+f8sBlyg7rPyRsSojgJA3r3Uohh6MaclnFGSbz9hCtBnLueMNd0MoBnKX/yJWkz/ee3/wEeX4FT7KEzGIp/VLlqy8m+qB2nyYQnnRKaUmRRxVgjh74XTKV+myvNXihjMxPSGU4vB6xfdrapqBh59F3GYvCkmKLccWSMacOlhFmLZr+mTnzHFoAmcXGWkhSRbbFGoYV+r2Tt/EehIZq6FYBbvFxPl9ylWoPc8YYMCBMwL95fxRS3gT+G5ocRTeSPFMJLCXvD+Kywfct67QziE3nJTFYYpM5GyhYbno13bpTQ46P15H+hsAO8xsBL9f6P9Bg==\",\"skuDetails\":\"{\\\"productId\\\":\\\"com.gameroasters.s4.google.vip\\\",\\\"type\\\":\\\"subs\\\",\\\"price\\\":\\\"5,99\\u00a0\\u20ac\\\",\\\"price_amount_micros\\\":5990000,\\\"price_currency_code\\\":\\\"EUR\\\",\\\"title\\\":\\\"vip subscription (com.gameroasters.stack4 (unreviewed))\\\",\\\"description\\\":\\\"super human vip subscription\\\",\\\"subscriptionPeriod\\\":\\\"P1W\\\",\\\"skuDetailsToken\\\":\\\"AEuhp4K7yfvyfegjPzVzpt-E3dMDsdY-n9jAp4V4CF3t5p24MaIjgvPF7xVkEr_g3rvL\\\"}\"}","Store":"GooglePlay","TransactionID":"pmkoeeioabjblfehjkdjdnig.AO-J1OzMAMUCsvmBp-Xg0_2Wa1zODlGjRnpjmTTHzcCLi1-tU1gndPCYGuKGz5fa-9pdWHBa816A6gTxYgFMJb9HTCIfADA894GEKVif4XsU5wBKCwLxw1w"}'''


def decode_command(raw: str) -> str:
    """Render the decoded structure of a receipt string."""
    receipt = decode_receipt(raw)
    lines = [f"receipt: {receipt!r}"]
    if receipt.store == Platform.GOOGLE_PLAY:
        lines.append(f"payload: {decode_payload(receipt)!r}")
    return "\n".join(lines)


def cli(argv=None):
    """Console entry point."""
    parser = argparse.ArgumentParser(prog="unity-iap")
    subparsers = parser.add_subparsers(dest="command", required=True)

    decode_parser = subparsers.add_parser("decode", help="Print the decoded structure of a receipt")
    decode_parser.add_argument("receipt", nargs="?", default=SAMPLE_RECEIPT)

    subparsers.add_parser("serve", help="Run the validation API")

    args = parser.parse_args(argv)

    if args.command == "decode":
        print(decode_command(args.receipt))
    elif args.command == "serve":
        import uvicorn

        uvicorn.run(
            "unity_iap.main:app",
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
            log_level=settings.log_level
        )


if __name__ == "__main__":
    cli()
