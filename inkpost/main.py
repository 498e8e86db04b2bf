from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pydantic import ValidationError
from sqlalchemy.exc import NoResultFound
from typing import Optional
import logging

from inkpost.core.config import Settings, get_settings
from inkpost.core.exceptions import (
    AuthApiError, AuthenticationError, FileValidationError, IncorrectPasswordError,
    InkpostError, InvalidCredentialsError, InvalidStateTransition, PermissionDeniedError,
    PostValidationError, RecordNotFoundError, SlugConflictError, UsernameTakenError
)
from inkpost.core.guard import AuthGuardMiddleware
from inkpost.core.logging import setup_logging
from inkpost.crud.comments import CommentCRUD
from inkpost.crud.posts import PostCRUD
from inkpost.routers import auth, comments, posts, profile, storage
from inkpost.schemas.blog import TagMissPolicy
from inkpost.services.gateway import Gateway, create_gateway

logger = logging.getLogger(__name__)

# Most specific first; the first matching class decides the status code
ERROR_STATUS = [
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (IncorrectPasswordError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (UsernameTakenError, status.HTTP_409_CONFLICT),
    (AuthApiError, status.HTTP_400_BAD_REQUEST),
    (SlugConflictError, status.HTTP_409_CONFLICT),
    (FileValidationError, status.HTTP_400_BAD_REQUEST),
    (PostValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
]


async def inkpost_error_handler(request: Request, exc: InkpostError):
    status_code = status.HTTP_400_BAD_REQUEST
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def no_result_handler(request: Request, exc: NoResultFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Not found"})


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors(include_url=False, include_context=False)},
    )


def create_app(settings: Optional[Settings] = None, gateway: Optional[Gateway] = None) -> FastAPI:
    """
    Build the application.

    Settings are read from the environment (and `.env`) unless given; a
    gateway may be injected, otherwise one is created from the settings.
    """
    settings = settings or (gateway.settings if gateway else get_settings())
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application...")
        logger.info(f"Tag miss policy: {settings.TAG_MISS_POLICY}, "
                    f"comment approval required: {settings.COMMENTS_REQUIRE_APPROVAL}")
        logger.info("Application startup complete")

        yield

        logger.info("Application shutdown initiated...")
        app.state.gateway.engine.dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Inkpost",
        description="Blog data layer: posts, tags, comments, profiles, authentication and uploads",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.gateway = gateway or create_gateway(settings)
    app.state.post_crud = PostCRUD(
        cover_max_mb=settings.COVER_MAX_MB,
        attachment_max_mb=settings.ATTACHMENT_MAX_MB,
        tag_miss_policy=TagMissPolicy(settings.TAG_MISS_POLICY),
        default_timezone=settings.DEFAULT_TIMEZONE,
    )
    app.state.comment_crud = CommentCRUD(require_approval=settings.COMMENTS_REQUIRE_APPROVAL)

    app.add_exception_handler(InkpostError, inkpost_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)

    # Added last so it runs first: CORS must also answer redirected requests
    app.add_middleware(AuthGuardMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            settings.FRONTEND_URL,
            "http://localhost:5173",  # Vite default
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router)       # /login, /signup, /logout, /account
    app.include_router(posts.router)      # /, /posts, /post/{slug}, /my-posts, /tags
    app.include_router(comments.router)   # /posts/{id}/comments, /comments/{id}/moderation
    app.include_router(profile.router)    # /profile, /dashboard
    app.include_router(storage.router)    # /storage/{bucket}/{path}

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    @app.get("/{path:path}", include_in_schema=False)
    def not_found(path: str):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Page not found")

    return app
