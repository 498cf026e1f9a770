from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, require_admin
from app.api.schemas.appointment import DispatchResponse
from app.core.security import Actor
from app.services.notification_service import NotificationDispatcher
from app.services.reminder_service import dispatch_due_reminders

router = APIRouter(prefix="/reminders", tags=["reminders"])


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """Dispatcher shared with the background poller so both count against one rate limit."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = NotificationDispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_now(
    session: AsyncSession = Depends(get_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    _: Actor = Depends(require_admin),
) -> DispatchResponse:
    """Run one dispatch pass immediately instead of waiting for the poller."""
    processed = await dispatch_due_reminders(session, dispatcher)
    return DispatchResponse(processed=processed)
