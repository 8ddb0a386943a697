from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
import logging
import time
import uvicorn

from app.core.config import settings, get_cors_origins
from app.api import otp
from app.services.otp import OTPService
from app.services.otp_store import build_otp_store
from app.utils.errors import OTPError

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
)

@app.on_event("startup")
async def startup_event():
    app.state.otp_service = OTPService(build_otp_store(settings), settings)

@app.on_event("shutdown")
async def shutdown_event():
    service = getattr(app.state, "otp_service", None)
    if service:
        service.shutdown()

# Set up CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response

@app.exception_handler(OTPError)
async def otp_exception_handler(request: Request, exc: OTPError):
    return JSONResponse(
        status_code=exc.status,
        content=exc.to_dict(),
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
    )

@app.get("/")
def read_root():
    return {"message": "We're up! 🍾"}

app.include_router(otp.router, prefix=settings.API_V1_STR)

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
