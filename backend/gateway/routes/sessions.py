"""
Session endpoints.

GET    /sessions        - summary and list of live sessions
GET    /sessions/{id}   - one session with its history
DELETE /sessions/{id}   - drop a session
"""
from fastapi import APIRouter, Depends, HTTPException

from gateway.core.logging import get_logger
from gateway.models.responses import SessionDetail, SessionMessage, SessionsResponse
from gateway.services.sessions.store import SessionStore, get_session_store

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=SessionsResponse)
async def list_sessions(store: SessionStore = Depends(get_session_store)):
    sessions = await store.list_sessions()
    return SessionsResponse(
        summary=await store.summary(),
        sessions=[session.to_dict() for session in sessions],
    )


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return SessionDetail(
        **session.to_dict(),
        conversation_history=[
            SessionMessage(role=turn.role, content=turn.content, timestamp=turn.timestamp)
            for turn in session.conversation_history
        ],
    )


@router.delete("/{session_id}")
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    if not await store.delete(session_id):
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    logger.info("session_deleted", session_id=session_id)
    return {"deleted": True, "sessionId": session_id}
