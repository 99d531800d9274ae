"""HTTP server for the IssueDesk credential issuance service.

Proxies the GitHub device flow, seals user sessions into stateless tokens
and exchanges them for installation-scoped access tokens signed with the
app's private key.
"""

import contextlib
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..auth.app_jwt import AppAssertionSigner
from ..auth.rate_limit import RateLimiter
from ..auth.security_log import SecurityEventType, log_security_event
from ..auth.sessions import BackendSession, SessionSealer
from ..clients.github import GitHubClient
from ..config import ServiceConfig
from ..core.models import DeviceAuthorization, Installation, InstallationToken, User
from ..errors import (
    AuthError,
    ConfigurationError,
    ErrorCode,
    GitHubApiError,
    InvalidRequestError,
    RateLimited,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Token"

# GitHub device-flow poll errors -> (status, code, message, retryable)
POLL_ERRORS: dict[str, tuple[int, str, str, bool]] = {
    "authorization_pending": (202, "AUTHORIZATION_PENDING", "Waiting for user authorization", True),
    "slow_down": (429, "SLOW_DOWN", "Polling too fast, slow down", True),
    "expired_token": (
        410,
        ErrorCode.DEVICE_FLOW_EXPIRED.value,
        "Device code expired. Please try again.",
        False,
    ),
    "access_denied": (403, ErrorCode.DEVICE_FLOW_DENIED.value, "Access denied by user.", False),
}

Handler = Callable[[Request], Awaitable[Response]]


def error_response(
    code: str, message: str, retryable: bool, status_code: int, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        {"error": code, "message": message, "retryable": retryable},
        status_code=status_code,
        headers=headers,
    )


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def handle_errors(func: Handler) -> Handler:
    """Convert tagged errors into the JSON error body."""

    @wraps(func)
    async def wrapper(request: Request) -> Response:
        try:
            return await func(request)
        except RateLimited as e:
            headers = {"Retry-After": str(e.retry_after)} if e.retry_after else None
            return error_response(e.code.value, e.message, e.retryable, e.status_code, headers)
        except AuthError as e:
            if e.status_code >= 500:
                logger.error(f"{func.__name__} failed: {e.code.value}: {e.message}")
            else:
                logger.info(f"{func.__name__} rejected: {e.code.value}: {e.message}")
            return error_response(e.code.value, e.message, e.retryable, e.status_code)
        except Exception:
            logger.exception(f"Unexpected error in {func.__name__}")
            return error_response(ErrorCode.INTERNAL_ERROR.value, "Internal server error", False, 500)

    return wrapper


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        log_security_event(SecurityEventType.INVALID_REQUEST, ip=_client_ip(request), reason="bad json")
        raise InvalidRequestError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


def normalize_installations(raw: list[Any]) -> list[Installation]:
    """Validate platform installation records, skipping malformed ones."""
    installations = []
    for item in raw:
        try:
            installations.append(Installation.model_validate(item))
        except PydanticValidationError as e:
            item_id = item.get("id") if isinstance(item, dict) else None
            logger.warning(f"Skipping malformed installation {item_id}: {e.error_count()} errors")
    return installations


def create_app(
    config: ServiceConfig | None = None,
    github: GitHubClient | None = None,
    sealer: SessionSealer | None = None,
    rate_limiter: RateLimiter | None = None,
) -> Starlette:
    """Create the Starlette issuance service.

    Fails fast with ConfigurationError when required settings or the signing
    key are missing or invalid.
    """
    config = config or ServiceConfig()
    try:
        config.validate()
        signer = AppAssertionSigner(config.github_app_id, config.github_private_key)
    except ConfigurationError as e:
        log_security_event(SecurityEventType.CONFIGURATION_ERROR, error=e.message)
        raise

    github = github or GitHubClient(config, signer)
    sealer = sealer or SessionSealer(config.session_secret, config.session_ttl_seconds)
    limiter = rate_limiter or RateLimiter(config.rate_limit_requests, config.rate_limit_window)

    def authenticate(request: Request) -> BackendSession:
        """Unseal the caller's session and apply the per-user rate limit."""
        try:
            session = sealer.unseal(request.headers.get(SESSION_HEADER))
        except UnauthorizedError:
            log_security_event(
                SecurityEventType.AUTH_FAILURE, ip=_client_ip(request), reason="invalid session"
            )
            raise

        result = limiter.check(f"user:{session.user_id}")
        if not result.allowed:
            log_security_event(
                SecurityEventType.RATE_LIMIT_HIT,
                user_id=session.user_id,
                ip=_client_ip(request),
                endpoint=request.url.path,
            )
            raise RateLimited(
                "Too many requests. Please try again later.", retry_after=result.retry_after
            )
        return session

    async def resolve_user(access_token: str, installations: list[Installation]) -> User:
        try:
            data = await github.get_user(access_token)
            return User.model_validate({**data, "name": data.get("name") or data.get("login")})
        except (AuthError, PydanticValidationError) as e:
            if not installations:
                if isinstance(e, AuthError):
                    raise
                raise GitHubApiError("Malformed user profile response") from e
            logger.warning(f"Falling back to installation account for user profile: {e}")
            account = installations[0].account
            return User(
                id=account.id, login=account.login, name=account.login, avatar_url=account.avatar_url
            )

    @handle_errors
    async def device(request: Request) -> Response:
        log_security_event(SecurityEventType.AUTH_ATTEMPT, ip=_client_ip(request))
        data = await github.initiate_device_flow()
        try:
            authorization = DeviceAuthorization.model_validate(data)
        except PydanticValidationError as e:
            raise GitHubApiError("Malformed device code response") from e
        return JSONResponse(authorization.model_dump())

    @handle_errors
    async def poll(request: Request) -> Response:
        body = await _json_body(request)
        device_code = body.get("device_code")
        if not isinstance(device_code, str) or not device_code:
            raise InvalidRequestError("device_code is required")

        payload = await github.poll_device_flow(device_code)
        error = payload.get("error")
        if error:
            if error in POLL_ERRORS:
                status, code, message, retryable = POLL_ERRORS[error]
                return error_response(code, message, retryable, status)
            log_security_event(SecurityEventType.AUTH_FAILURE, ip=_client_ip(request), error=error)
            raise InvalidRequestError(payload.get("error_description") or f"Device flow error: {error}")

        access_token = payload.get("access_token")
        if not access_token:
            raise GitHubApiError("Device token response carried no access token")

        installations = normalize_installations(await github.get_user_installations(access_token))
        user = await resolve_user(access_token, installations)
        session_token = sealer.seal(BackendSession(user_id=user.id, access_token=access_token))

        log_security_event(
            SecurityEventType.AUTH_SUCCESS,
            user_id=user.id,
            ip=_client_ip(request),
            installations=len(installations),
        )
        log_security_event(SecurityEventType.SESSION_CREATED, user_id=user.id)
        return JSONResponse(
            {
                "session_token": session_token,
                "user": user.model_dump(mode="json"),
                "installations": [i.model_dump(mode="json") for i in installations],
            }
        )

    async def issue_token(request: Request, event: SecurityEventType) -> Response:
        session = authenticate(request)
        body = await _json_body(request)
        installation_id = body.get("installation_id")
        if isinstance(installation_id, bool) or not isinstance(installation_id, int) or installation_id <= 0:
            raise InvalidRequestError("installation_id must be a positive integer")

        accessible = await github.get_user_installations(session.access_token)
        if not any(item.get("id") == installation_id for item in accessible if isinstance(item, dict)):
            log_security_event(
                SecurityEventType.AUTH_FAILURE,
                user_id=session.user_id,
                installation_id=installation_id,
                reason="installation not accessible",
            )
            raise UnauthorizedError("Installation is not accessible to this user", status_code=403)

        data = await github.create_installation_token(installation_id)
        try:
            token = InstallationToken.model_validate(data)
        except PydanticValidationError as e:
            raise GitHubApiError("Malformed installation token response") from e

        log_security_event(
            event,
            user_id=session.user_id,
            installation_id=installation_id,
            expires_at=token.expires_at.isoformat(),
        )
        return JSONResponse(token.model_dump(mode="json"))

    @handle_errors
    async def installation_token(request: Request) -> Response:
        return await issue_token(request, SecurityEventType.TOKEN_GENERATED)

    @handle_errors
    async def refresh_installation_token(request: Request) -> Response:
        return await issue_token(request, SecurityEventType.TOKEN_REFRESHED)

    @handle_errors
    async def installations(request: Request) -> Response:
        session = authenticate(request)
        fresh = normalize_installations(await github.get_user_installations(session.access_token))
        return JSONResponse({"installations": [i.model_dump(mode="json") for i in fresh]})

    async def health_check(request: Request) -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({"status": "ok", "service": "issuedesk-auth"})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(f"Issuance service starting: {config.to_dict()}")
        yield
        await github.aclose()

    app = Starlette(
        routes=[
            Route("/auth/device", device, methods=["POST"]),
            Route("/auth/poll", poll, methods=["POST"]),
            Route("/auth/installation-token", installation_token, methods=["POST"]),
            Route("/auth/refresh-installation-token", refresh_installation_token, methods=["POST"]),
            Route("/auth/installations", installations, methods=["POST"]),
            Route("/health", health_check, methods=["GET"]),
        ],
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", SESSION_HEADER],
    )

    app.state.config = config
    app.state.github = github
    app.state.sealer = sealer
    app.state.rate_limiter = limiter
    return app
