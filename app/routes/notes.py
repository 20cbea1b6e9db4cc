"""
Note API routes.

Administrative endpoints for creating, listing, inspecting and replaying notes.
"""
import math
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

from app.database import AsyncSessionLocal
from app.errors import NoteNotFound, ReplayNotAllowed
from app.models.note import Note, NoteStatus
from app.services.idempotency import isoformat_utc
from app.services.note_service import NoteService
from app.services.note_store import NoteStore


router = APIRouter(prefix="/api/notes", tags=["notes"])

DEFAULT_NOTES_PER_PAGE = 20


def get_note_store() -> NoteStore:
    """Note store bound to the API's session factory."""
    return NoteStore(AsyncSessionLocal)


def get_note_service(store: NoteStore = Depends(get_note_store)) -> NoteService:
    return NoteService(store)


# Pydantic models for request/response
class CreateNoteRequest(BaseModel):
    """Request model for creating a note."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    release_at: datetime = Field(alias="releaseAt")
    webhook_url: AnyHttpUrl = Field(alias="webhookUrl")


class AttemptResponse(BaseModel):
    """One delivery attempt."""
    at: str
    statusCode: int
    ok: bool
    error: str | None = None


class NoteResponse(BaseModel):
    """Response model for a note."""
    id: str
    title: str
    body: str
    releaseAt: str
    webhookUrl: str
    status: str
    attempts: list[AttemptResponse] = []
    deliveredAt: str | None = None
    nextAttemptAt: str | None = None


class PaginationResponse(BaseModel):
    total: int
    page: int
    notesPerPage: int
    totalPages: int


class NoteListResponse(BaseModel):
    data: list[NoteResponse]
    pagination: PaginationResponse


def note_to_response(note: Note) -> NoteResponse:
    """Convert Note model to NoteResponse."""
    return NoteResponse(
        id=note.id,
        title=note.title,
        body=note.body,
        releaseAt=isoformat_utc(note.release_at),
        webhookUrl=note.webhook_url,
        status=note.status.value if isinstance(note.status, NoteStatus) else note.status,
        attempts=[
            AttemptResponse(
                at=isoformat_utc(a.at),
                statusCode=a.status_code,
                ok=a.ok,
                error=a.error,
            )
            for a in note.attempts
        ],
        deliveredAt=isoformat_utc(note.delivered_at) if note.delivered_at else None,
        nextAttemptAt=isoformat_utc(note.next_attempt_at) if note.next_attempt_at else None,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=dict)
async def create_note(
    request: CreateNoteRequest,
    service: NoteService = Depends(get_note_service)
):
    """
    Create a new note.

    The note is delivered to webhookUrl once releaseAt has passed.
    """
    note = await service.create_note(
        title=request.title,
        body=request.body,
        release_at=request.release_at,
        webhook_url=str(request.webhook_url),
    )
    return {
        "message": "Note created successfully",
        "id": note.id
    }


@router.get("", response_model=NoteListResponse)
async def list_notes(
    page: int = Query(1, ge=1),
    status_filter: Literal["all", "pending", "delivered", "failed", "dead"] = Query("all", alias="status"),
    service: NoteService = Depends(get_note_service)
):
    """List notes sorted by release time, optionally filtered by status."""
    note_status = None if status_filter == "all" else NoteStatus(status_filter)
    notes, total = await service.list_notes(note_status, page, DEFAULT_NOTES_PER_PAGE)

    return NoteListResponse(
        data=[note_to_response(n) for n in notes],
        pagination=PaginationResponse(
            total=total,
            page=page,
            notesPerPage=DEFAULT_NOTES_PER_PAGE,
            totalPages=math.ceil(total / DEFAULT_NOTES_PER_PAGE),
        ),
    )


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    service: NoteService = Depends(get_note_service)
):
    """Get a note with its delivery attempts."""
    try:
        note = await service.get_note(note_id)
    except NoteNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Note not found"
        )
    return note_to_response(note)


@router.post("/{note_id}/replay", response_model=dict)
async def replay_note(
    note_id: str,
    service: NoteService = Depends(get_note_service)
):
    """
    Replay a dead or failed note.

    Clears its attempts and makes it due again from its original releaseAt.
    """
    try:
        note = await service.replay(note_id)
    except NoteNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Note not found"
        )
    except ReplayNotAllowed as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )

    return {
        "message": "Note requeued successfully",
        "id": note.id
    }


@router.delete("/{note_id}", response_model=dict)
async def delete_note(
    note_id: str,
    service: NoteService = Depends(get_note_service)
):
    """Delete a note."""
    try:
        await service.delete_note(note_id)
    except NoteNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Note not found"
        )
    return {"message": "Note deleted successfully", "id": note_id}
