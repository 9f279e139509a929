from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dpm_api.api.v1.auth import router as auth_router
from dpm_api.core.config import settings
from dpm_api.core.errors import AuthError
from dpm_api.core.logging import configure_logging
from dpm_api.core.email_domains import allow_special_use_domains

configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
allow_special_use_domains(settings.EMAIL_ALLOWED_SPECIAL_DOMAINS)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


app.include_router(auth_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
