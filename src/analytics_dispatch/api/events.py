"""
Event ingestion API endpoint.

Main endpoint: POST /v1/events:send
"""

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request

from ..core.dispatcher import Dispatcher, get_dispatcher
from ..models.event import ErrorResponse, SendEventsRequest, SendEventsResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


async def get_app_dispatcher(request: Request) -> Dispatcher:
    """Dependency returning the dispatcher from app state."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher if dispatcher is not None else get_dispatcher()


@router.post(
    "/events:send",
    response_model=SendEventsResponse,
    status_code=202,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        502: {"model": ErrorResponse, "description": "Analytics backend rejected the events"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Send analytics events",
    description="""
    Dispatch a batch of analytics events.

    **Processing:**
    1. Disabled deployments accept and drop the batch
    2. Initialisation event on first use
    3. Delivery inline, in the background, or after the maintenance window
    4. Log-only deployments log the redacted events instead of sending

    Hidden data is never written to logs.
    """,
)
async def send_events(
    request: SendEventsRequest,
    dispatcher: Dispatcher = Depends(get_app_dispatcher),
) -> SendEventsResponse:
    request_id = str(uuid.uuid4())

    logger.info(
        "Received events",
        events_count=len(request.events),
        request_id=request_id,
    )

    await dispatcher.submit(request.events)

    return SendEventsResponse(
        message="Events accepted for dispatch",
        events_accepted=len(request.events),
        request_id=request_id,
        timestamp=datetime.now(timezone.utc),
    )
