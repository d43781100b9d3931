from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth.deps import CallerContext, get_caller_context
from app.db.session import get_db
from app.handoff.schemas import HandoffOut, HandoffRequest, HandoffResponseOut, HandoffResponseRequest
from app.handoff.service import HandoffCommand, HandoffResponseCommand, handoff, handoff_response
from app.signals.client import get_signal_dispatcher
from app.signals.dispatcher import SignalDispatcher

router = APIRouter()


@router.post("", response_model=HandoffOut)
async def create_handoff(
    payload: HandoffRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: SignalDispatcher = Depends(get_signal_dispatcher),
):
    result = await handoff(db, dispatcher, ctx, HandoffCommand(**payload.model_dump()))
    return HandoffOut(
        thread_id=result.target_thread_id,
        target_workflow_id=result.target_workflow_id,
        source_message_id=result.source_message_id,
        target_message_id=result.target_message_id,
        request_id=result.request_id,
        started_if_missing=result.started_if_missing,
    )


@router.post("/response", response_model=HandoffResponseOut)
def create_handoff_response(
    payload: HandoffResponseRequest,
    db: Session = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    message_ids = handoff_response(db, ctx, HandoffResponseCommand(**payload.model_dump()))
    return HandoffResponseOut(message_ids=message_ids)
