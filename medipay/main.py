from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medipay.config import get_settings
from medipay.database import Base, SessionLocal, engine
from medipay.exceptions import PaymentError
from medipay.gateway import GatewayClient
from medipay.logging_config import configure_logging, get_logger
from medipay.notifications import LogNotifier
from medipay.routes import router
from medipay.store import PaymentOrderStore

settings = get_settings()
configure_logging(settings.debug)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.gateway.close()
    logger.info("gateway_client_closed")


app = FastAPI(title="MediHaven Payment Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(dict.fromkeys([
        settings.frontend_url,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ])),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

app.state.gateway = GatewayClient.from_settings(settings)
app.state.store = PaymentOrderStore(SessionLocal)
app.state.notifier = LogNotifier()

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("request_validation_failed", path=request.url.path)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body"},
    )


@app.get("/health")
def health():
    return {
        "status": "OK",
        "message": "MediHaven payment service is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=4321)
