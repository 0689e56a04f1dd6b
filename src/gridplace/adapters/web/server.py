"""FastAPI-based web adapter for the canvas service.

This module exposes the placement, read, registration and status endpoints
over REST, and the observer feed over a WebSocket. A per-client sliding
window limiter and an auth-failure limiter sit in front of the admission
controller; the controller still validates everything itself.
"""

import asyncio
import math
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gridplace import __version__
from gridplace.config import Config
from gridplace.core.admission import PlacementRejected
from gridplace.core.broadcaster import Subscription
from gridplace.core.canvas import CanvasService
from gridplace.schemas.messages import (
    ActivityEntry,
    ActivityResponse,
    AgentListResponse,
    AgentStatusResponse,
    AgentSummary,
    BoundsModel,
    CanvasResponse,
    CellEntry,
    CellResponse,
    CooldownStatus,
    ErrorResponse,
    PlacementRequest,
    PlacementResponse,
    RegistrationRequest,
    RegistrationResponse,
    StatsResponse,
)
from gridplace.schemas.types import Bounds
from gridplace.utils.errors import (
    CapacityExceededError,
    GridPlaceError,
    InvalidCredentialError,
    PerOriginLimitExceededError,
    RateLimitedError,
)
from gridplace.utils.telemetry import get_logger

# Error code -> HTTP status
ERROR_STATUS: dict[str, int] = {
    "invalid_credential": status.HTTP_401_UNAUTHORIZED,
    "invalid_coordinates": status.HTTP_400_BAD_REQUEST,
    "invalid_color": status.HTTP_400_BAD_REQUEST,
    "invalid_name": status.HTTP_400_BAD_REQUEST,
    "region_too_large": status.HTTP_400_BAD_REQUEST,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "per_origin_limit_exceeded": status.HTTP_429_TOO_MANY_REQUESTS,
    "capacity_exceeded": status.HTTP_503_SERVICE_UNAVAILABLE,
    "duplicate_credential": status.HTTP_503_SERVICE_UNAVAILABLE,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# WebSocket close codes
WS_CLOSE_TRY_AGAIN_LATER = 1013
WS_CLOSE_POLICY_VIOLATION = 1008
WS_CLOSE_GOING_AWAY = 1001


class RateLimiter:
    """Simple in-memory sliding window rate limiter."""

    def __init__(self, max_requests: int = 100, window_seconds: int = 60):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests per window
            window_seconds: Time window in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: dict[str, list[float]] = {}

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self.requests.get(key, []) if t > cutoff]
        if recent:
            self.requests[key] = recent
        else:
            self.requests.pop(key, None)
        return recent

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed for the given key, and record it.

        Args:
            key: Rate limiting key (e.g., client address)

        Returns:
            True if request is allowed
        """
        now = time.time()
        recent = self._prune(key, now)

        if len(recent) >= self.max_requests:
            return False

        self.requests.setdefault(key, []).append(now)
        return True

    def remaining(self, key: str) -> int:
        """Requests left in the current window, without recording one."""
        return max(0, self.max_requests - len(self._prune(key, time.time())))

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest request in the window expires."""
        recent = self._prune(key, time.time())
        if len(recent) < self.max_requests:
            return 0
        return max(1, math.ceil(recent[0] + self.window_seconds - time.time()))


def error_detail(error: GridPlaceError) -> dict[str, Any]:
    return ErrorResponse(
        error=error.code,
        message=error.message,
        recovery_action=error.recovery_action.value,
        details=error.details(),
    ).model_dump()


def http_error(error: GridPlaceError) -> HTTPException:
    """Map a service error onto an HTTPException with a structured body."""
    headers: dict[str, str] | None = None
    if isinstance(error, RateLimitedError):
        headers = {
            "Retry-After": str(max(1, math.ceil(error.wait_ms / 1000))),
            "X-RateLimit-Limit": "1",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(math.ceil(error.next_eligible_at / 1000)),
        }
    return HTTPException(
        status_code=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=error_detail(error),
        headers=headers,
    )


def throttled(code: str, message: str, retry_after: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=ErrorResponse(
            error=code,
            message=message,
            recovery_action="retry_with_delay",
            details={"retry_after_seconds": retry_after},
        ).model_dump(),
        headers={"Retry-After": str(retry_after)},
    )


def _parse_int(value: str | None) -> Any:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return value


class WebAdapter:
    """FastAPI-based web adapter for the canvas service."""

    def __init__(self, service: CanvasService, config: Config | None = None):
        """Initialize web adapter.

        Args:
            service: Canvas service; initialized and shut down by the app lifespan
            config: Configuration (defaults to the service's)
        """
        self.service = service
        self.config = config or service.config
        security = self.config.security

        self.placement_limiter = RateLimiter(security.placement_requests_per_minute, 60)
        self.registration_limiter = RateLimiter(
            security.registration_requests_per_hour, 3600
        )
        self.auth_failure_limiter = RateLimiter(security.auth_failures_per_minute, 60)
        self.logger = get_logger("gridplace.web_adapter")

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            # Startup
            await self.service.initialize()
            self.logger.info("Web adapter started")
            yield
            # Shutdown
            await self.shutdown()
            self.logger.info("Web adapter stopped")

        self.app = FastAPI(
            title="GridPlace Canvas API",
            description="Shared canvas where agents place pixels under a cooldown",
            version=__version__,
            lifespan=lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=security.allowed_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"],
        )

        self._setup_routes()

    def client_key(self, scope: Request | WebSocket) -> str:
        """Identify the caller for throttling and per-origin caps."""
        if self.config.security.trust_forwarded_for:
            forwarded = scope.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        if scope.client is not None:
            return scope.client.host
        return "unknown"

    def _check_auth_failures(self, key: str) -> None:
        if self.auth_failure_limiter.remaining(key) == 0:
            raise throttled(
                "too_many_auth_failures",
                "Too many failed authentication attempts",
                self.auth_failure_limiter.retry_after(key),
            )

    def _record_auth_failure(self, error: GridPlaceError, key: str) -> None:
        if isinstance(error, InvalidCredentialError):
            self.auth_failure_limiter.is_allowed(key)
            self.logger.warning("Authentication failed", client=key)

    def _setup_routes(self) -> None:
        """Set up API routes."""
        security = HTTPBearer(auto_error=False)
        service = self.service

        async def get_credential(
            credentials: HTTPAuthorizationCredentials | None = Depends(security),
        ) -> str:
            """Extract the bearer credential; shape is checked downstream."""
            return credentials.credentials if credentials else ""

        async def check_placement_rate(request: Request) -> str:
            key = self.client_key(request)
            if not self.placement_limiter.is_allowed(key):
                raise throttled(
                    "too_many_requests",
                    "Too many requests from this client",
                    self.placement_limiter.retry_after(key),
                )
            return key

        @self.app.get("/health")
        async def health_check() -> dict[str, Any]:
            """Health check endpoint."""
            return {
                "status": "healthy" if service.initialized else "starting",
                "viewers": service.broadcaster.count(),
                "timestamp": time.time(),
            }

        @self.app.post(
            "/api/pixel",
            response_model=PlacementResponse,
            responses={
                400: {"model": ErrorResponse},
                401: {"model": ErrorResponse},
                429: {"model": ErrorResponse},
                500: {"model": ErrorResponse},
            },
        )
        async def place_pixel(
            placement: PlacementRequest,
            credential: str = Depends(get_credential),
            client: str = Depends(check_placement_rate),
        ) -> PlacementResponse:
            """Place one pixel."""
            self._check_auth_failures(client)

            result = await service.controller.place(
                credential, placement.x, placement.y, placement.color
            )
            if isinstance(result, PlacementRejected):
                self._record_auth_failure(result.error, client)
                raise http_error(result.error)

            return PlacementResponse(
                x=result.x,
                y=result.y,
                color=result.color,
                agent=AgentSummary(**result.agent),
                was_override=result.was_override,
                previous_writer_id=result.previous_writer_id,
                placed_at=result.placed_at,
                next_eligible_at=result.next_eligible_at,
                cooldown_ms=result.cooldown_ms,
                message=f"Pixel placed at ({result.x}, {result.y})",
            )

        @self.app.get(
            "/api/pixel",
            response_model=CellResponse,
            responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
        )
        async def get_pixel(x: str | None = None, y: str | None = None) -> CellResponse:
            """Read one cell."""
            try:
                found = await service.controller.get_cell(_parse_int(x), _parse_int(y))
            except GridPlaceError as e:
                raise http_error(e) from e

            if found is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=ErrorResponse(
                        error="not_found",
                        message="Cell has not been claimed",
                    ).model_dump(),
                )

            cell, writer = found
            return CellResponse(
                x=cell["x"],
                y=cell["y"],
                color=cell["color"],
                written_at=cell["written_at"],
                agent=AgentSummary(**writer) if writer else None,
            )

        @self.app.get(
            "/api/canvas",
            response_model=CanvasResponse,
            responses={400: {"model": ErrorResponse}},
        )
        async def get_canvas(
            min_x: int | None = None,
            max_x: int | None = None,
            min_y: int | None = None,
            max_y: int | None = None,
        ) -> CanvasResponse:
            """Export the canvas as a sparse map, optionally for a region."""
            last = service.config.canvas.grid_size - 1
            region: Bounds | None = None
            if any(v is not None for v in (min_x, max_x, min_y, max_y)):
                region = {
                    "min_x": min_x if min_x is not None else 0,
                    "max_x": max_x if max_x is not None else last,
                    "min_y": min_y if min_y is not None else 0,
                    "max_y": max_y if max_y is not None else last,
                }

            try:
                cells = await service.canvas(region)
            except GridPlaceError as e:
                raise http_error(e) from e

            stats = await service.stats()
            return CanvasResponse(
                canvas={
                    f"{c['x']},{c['y']}": CellEntry(
                        color=c["color"],
                        writer_id=c["writer_id"],
                        written_at=c["written_at"],
                    )
                    for c in cells
                },
                cell_count=stats["cell_count"],
                returned_cells=len(cells),
                bounds=BoundsModel(**(stats["bounds"] or {})),
                grid_size=stats["grid_size"],
                viewers=stats["viewers"],
                cooldown_ms=stats["cooldown_ms"],
                timestamp=stats["timestamp"],
            )

        @self.app.get("/api/canvas/activity", response_model=ActivityResponse)
        async def get_activity(limit: int = 50) -> ActivityResponse:
            """Most recent committed placements, newest first."""
            entries = service.activity.recent(max(0, min(limit, 100)))
            return ActivityResponse(
                activity=[ActivityEntry(**e) for e in entries],
                count=len(entries),
            )

        @self.app.get("/api/stats", response_model=StatsResponse)
        async def get_stats() -> StatsResponse:
            """Canvas-wide counters."""
            stats = await service.stats()
            stats["bounds"] = BoundsModel(**(stats["bounds"] or {}))
            return StatsResponse(**stats)

        @self.app.post(
            "/api/agents",
            response_model=RegistrationResponse,
            status_code=status.HTTP_201_CREATED,
            responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
        )
        async def register_agent(
            registration: RegistrationRequest, request: Request
        ) -> RegistrationResponse:
            """Register a new agent. The credential is returned only here."""
            key = self.client_key(request)
            if not self.registration_limiter.is_allowed(key):
                raise throttled(
                    "too_many_registrations",
                    "Too many registrations from this client",
                    self.registration_limiter.retry_after(key),
                )

            try:
                result = await service.registry.register(
                    registration.name, registration.color
                )
            except GridPlaceError as e:
                raise http_error(e) from e

            agent = result.agent
            return RegistrationResponse(
                id=agent.id,
                name=agent.name,
                credential=agent.credential,
                color=agent.color,
                created_at=agent.created_at,
                cooldown_ms=service.config.canvas.cooldown_ms,
                grid_size=service.config.canvas.grid_size,
                palette=list(service.palette),
                next_eligible_at=agent.created_at,
                name_was_modified=result.name_was_modified,
                original_name=result.original_name,
                message="Save this credential now. It cannot be recovered.",
            )

        @self.app.get("/api/agents", response_model=AgentListResponse)
        async def list_agents() -> AgentListResponse:
            """Public list of agents, newest first."""
            agents = await service.directory.list_agents()
            counts = await service.cache.counts_by_writer()
            return AgentListResponse(
                agents=[
                    AgentSummary(**a, cells_placed=counts.get(a["id"], 0))
                    for a in agents
                ],
                count=len(agents),
            )

        @self.app.get(
            "/api/agents/status",
            response_model=AgentStatusResponse,
            responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
        )
        async def agent_status(
            request: Request, credential: str = Depends(get_credential)
        ) -> AgentStatusResponse:
            """Cooldown status for the calling agent."""
            client = self.client_key(request)
            self._check_auth_failures(client)
            try:
                report = await service.controller.status(credential)
            except GridPlaceError as e:
                self._record_auth_failure(e, client)
                raise http_error(e) from e

            return AgentStatusResponse(
                id=report.agent["id"],
                name=report.agent["name"],
                color=report.agent["color"],
                cells_placed=report.cells_placed,
                cooldown=CooldownStatus(
                    can_place_now=report.can_place_now,
                    wait_ms=report.wait_ms,
                    next_eligible_at=report.next_eligible_at,
                    cooldown_ms=report.cooldown_ms,
                ),
            )

        @self.app.websocket("/api/stream")
        async def stream(websocket: WebSocket) -> None:
            """WebSocket endpoint for live canvas updates."""
            origin = self.client_key(websocket)
            await websocket.accept()

            try:
                subscription = service.broadcaster.subscribe(origin)
            except CapacityExceededError as e:
                await websocket.send_json(e.to_dict())
                await websocket.close(code=WS_CLOSE_TRY_AGAIN_LATER, reason=e.message)
                return
            except PerOriginLimitExceededError as e:
                await websocket.send_json(e.to_dict())
                await websocket.close(code=WS_CLOSE_POLICY_VIOLATION, reason=e.message)
                return

            await self._serve_subscription(websocket, subscription)

    async def _serve_subscription(
        self, websocket: WebSocket, subscription: Subscription
    ) -> None:
        sender = asyncio.create_task(self._send_events(websocket, subscription))
        receiver = asyncio.create_task(self._receive_until_closed(websocket))
        try:
            await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self.service.broadcaster.unsubscribe(subscription)
            for task in (sender, receiver):
                task.cancel()
                with suppress(asyncio.CancelledError, WebSocketDisconnect):
                    await task

        if subscription.close_reason not in (None, "closed"):
            # Closed from our side (expired, too slow or shutting down)
            with suppress(RuntimeError, WebSocketDisconnect):
                await websocket.close(
                    code=WS_CLOSE_GOING_AWAY, reason=subscription.close_reason
                )

    async def _send_events(
        self, websocket: WebSocket, subscription: Subscription
    ) -> None:
        try:
            async for event in subscription:
                await websocket.send_json(event)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            # A failed send means the peer is gone; the ping frames surface this
            self.logger.info(
                "Observer send failed",
                subscription_id=subscription.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _receive_until_closed(self, websocket: WebSocket) -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    async def shutdown(self) -> None:
        """Shutdown the web adapter and the canvas service."""
        await self.service.shutdown()
        self.logger.info("Web adapter shutdown complete")


def create_web_adapter(
    config: Config | None = None, service: CanvasService | None = None
) -> WebAdapter:
    """Create a web adapter instance.

    Args:
        config: Configuration (defaults if None)
        service: Pre-built canvas service; built from ``config`` if None

    Returns:
        WebAdapter instance
    """
    config = config or (service.config if service else Config())
    service = service or CanvasService(config)
    return WebAdapter(service=service, config=config)
