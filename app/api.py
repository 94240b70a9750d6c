"""FastAPI application that exposes the referral directory over HTTP."""
from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import Settings
from .directory import INTERNAL_ERROR_MESSAGE, UserDirectory
from .models import RegistrationInput, User, UserStatistics

logger = logging.getLogger("referrals.api")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

ENDPOINTS = {
    "GET /api": "Get API information",
    "GET /api/users": "Get all users",
    "POST /api/register": "Register a new user",
    "GET /api/users/:referralCode": "Get user by referral code",
    "GET /api/stats": "Get referral statistics",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    referral_code: str
    points: int
    created_at: datetime
    updated_at: datetime


class UserEnvelope(CamelModel):
    success: bool = True
    user: UserResponse


class UserListResponse(CamelModel):
    success: bool = True
    count: int
    users: List[UserResponse]


class RegisterRequest(CamelModel):
    name: Any = None
    email: Any = None
    referral_code: Any = None

    @field_validator("referral_code", mode="before")
    @classmethod
    def _blank_code_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_input(self) -> RegistrationInput:
        return RegistrationInput(name=self.name, email=self.email, referral_code=self.referral_code)


class RegisterResponse(CamelModel):
    success: bool = True
    message: str = "User registered successfully"
    user: UserResponse


class TopUserResponse(CamelModel):
    name: str
    email: str
    points: int


class StatisticsResponse(CamelModel):
    total_users: int
    total_points: int
    average_points: int
    top_users: List[TopUserResponse]


class StatisticsEnvelope(CamelModel):
    success: bool = True
    statistics: StatisticsResponse


class SampleUserResponse(CamelModel):
    name: str
    email: str
    referral_code: str
    points: int


class ApiInfoResponse(CamelModel):
    success: bool = True
    message: str
    version: str
    description: str
    endpoints: Dict[str, str]
    sample_users: List[SampleUserResponse]


class HealthResponse(CamelModel):
    success: bool = True
    message: str = "Server is healthy"
    timestamp: datetime
    uptime: float
    environment: str
    version: str


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        referral_code=user.referral_code,
        points=user.points,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def statistics_to_response(stats: UserStatistics) -> StatisticsResponse:
    return StatisticsResponse(
        total_users=stats.total_users,
        total_points=stats.total_points,
        average_points=stats.average_points,
        top_users=[
            TopUserResponse(name=entry.name, email=entry.email, points=entry.points)
            for entry in stats.top_users
        ],
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("REFERRAL_TRUSTED_PROXIES")
    if not raw:
        return "127.0.0.1"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "127.0.0.1"


def create_app(
    *,
    directory: UserDirectory | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings()
    if directory is None:
        directory = UserDirectory(settings=settings)

    app = FastAPI(
        title=settings.app.name,
        description=settings.app.description,
        version=settings.app.version,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.server.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.directory = directory
    app.state.settings = settings
    started = time.monotonic()

    @app.middleware("http")
    async def log_and_harden(request: Request, call_next) -> Response:
        begin = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - begin) * 1000
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)

        client = request.client.host if request.client else "unknown"
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s in %.1fms (client %s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            client,
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            return error_response(exc.status_code, f"Route {request.url.path} not found")
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected malformed request to %s: %s", request.url.path, exc.errors())
        return error_response(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        # Raised errors bypass log_and_harden, so the headers are applied here.
        logger.exception("Unhandled error while serving %s %s", request.method, request.url.path)
        response = error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)
        response.headers.update(SECURITY_HEADERS)
        return response

    def get_directory() -> UserDirectory:
        return directory

    @app.get("/health", response_model=HealthResponse)
    async def healthcheck() -> HealthResponse:
        return HealthResponse(
            timestamp=datetime.now(timezone.utc),
            uptime=round(time.monotonic() - started, 3),
            environment=settings.server.environment,
            version=settings.app.version,
        )

    router = APIRouter(prefix="/api")

    @router.get("", response_model=ApiInfoResponse)
    async def api_info(users: UserDirectory = Depends(get_directory)) -> ApiInfoResponse:
        samples = [
            SampleUserResponse(
                name=user.name,
                email=user.email,
                referral_code=user.referral_code,
                points=user.points,
            )
            for user in users.list_users()[:3]
        ]
        return ApiInfoResponse(
            message=f"Welcome to the {settings.app.name} API",
            version=settings.app.version,
            description=settings.app.description,
            endpoints=dict(ENDPOINTS),
            sample_users=samples,
        )

    @router.get("/users", response_model=UserListResponse)
    async def list_users(users: UserDirectory = Depends(get_directory)) -> UserListResponse:
        listing = [user_to_response(user) for user in users.list_users()]
        return UserListResponse(count=len(listing), users=listing)

    @router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
    async def register(
        payload: RegisterRequest,
        users: UserDirectory = Depends(get_directory),
    ) -> RegisterResponse:
        result = users.register(payload.to_input())
        if not result.success or result.user is None:
            raise HTTPException(status_code=result.status_code, detail=result.error or INTERNAL_ERROR_MESSAGE)
        return RegisterResponse(user=user_to_response(result.user))

    @router.get("/users/{referral_code}", response_model=UserEnvelope)
    async def read_user(referral_code: str, users: UserDirectory = Depends(get_directory)) -> UserEnvelope:
        user: Optional[User] = users.find_by_referral_code(referral_code)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return UserEnvelope(user=user_to_response(user))

    @router.get("/stats", response_model=StatisticsEnvelope)
    async def read_statistics(users: UserDirectory = Depends(get_directory)) -> StatisticsEnvelope:
        return StatisticsEnvelope(statistics=statistics_to_response(users.statistics()))

    app.include_router(router)

    return app


__all__ = [
    "RegisterRequest",
    "UserResponse",
    "create_app",
    "statistics_to_response",
    "user_to_response",
]
