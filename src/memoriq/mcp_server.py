#!/usr/bin/env python3
"""MCP server for the memoriq journal.

Native MCP protocol implementation using FastMCP.  Each tool validates its
arguments with a Pydantic model from ``models.mcp_inputs`` and delegates to
the services of the shared :class:`~memoriq.runtime.Runtime`.  Tools never
raise to the client; failures come back as ``{"success": False, "error": ...}``.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import settings
from .inference.base import ModelNotReadyError
from .models.mcp_inputs import (
    AskMemoriesParams,
    CompleteReminisceParams,
    CreateNoteParams,
    GenerateQuizParams,
    NoteIdParams,
    SearchNotesParams,
    StartReminisceParams,
    UpdateNoteParams,
)
from .models.note import NoteWithDetails
from .runtime import Runtime, create_runtime
from .storage.base import NoteNotFoundError, StorageError

logging.basicConfig(level=settings.debug.log_level)
logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    runtime: Runtime


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Open the store and models for the lifetime of the server."""
    runtime = await create_runtime(settings)
    try:
        yield MCPServerContext(runtime=runtime)
    finally:
        await runtime.close()


mcp = FastMCP("memoriq", lifespan=mcp_server_lifespan)


def _runtime(ctx: Context) -> Runtime:
    return ctx.request_context.lifespan_context.runtime


def _note_to_dict(note: NoteWithDetails) -> dict[str, Any]:
    return {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "tags": note.tag_names,
        "images": [{"id": img.id, "uri": img.uri, "description": img.description} for img in note.images],
        "audio_uri": note.audio_uri,
        "recall_script": note.recall_script,
        "last_shown_at": note.last_shown_at,
        "created_at": note.created_at,
        "updated_at": note.updated_at,
    }


# =============================================================================
# NOTES
# =============================================================================


@mcp.tool()
async def create_note(
    title: str,
    ctx: Context,
    content: str = "",
    tags: str | list[str] | None = None,
    images: list[dict[str, str]] | None = None,
    audio_uri: str | None = None,
) -> dict[str, Any]:
    """Save a new memory to the journal.

    Embeddings and a spoken recall script are generated in the background.

    Args:
        title: Short title of the memory
        content: The memory, written in the first person
        tags: Labels, accepts ["family", "lake"] or "family,lake"
        images: Attached photos as [{"uri": ..., "description": ...}]
        audio_uri: Optional recorded audio

    Returns:
        {success, note_id, message}
    """
    try:
        params = CreateNoteParams(title=title, content=content, tags=tags, images=images or [], audio_uri=audio_uri)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        note_id = await _runtime(ctx).notes.create_note(params.to_input())
    except StorageError as e:
        logger.error(f"create_note failed: {e}")
        return {"success": False, "error": str(e)}

    return {"success": True, "note_id": note_id, "message": "Memory saved"}


@mcp.tool()
async def update_note(
    note_id: int,
    title: str,
    ctx: Context,
    content: str = "",
    tags: str | list[str] | None = None,
    images: list[dict[str, str]] | None = None,
    audio_uri: str | None = None,
) -> dict[str, Any]:
    """Replace a memory with new contents.

    The full state is replaced: omitted tags or images are removed.

    Returns:
        {success, note_id, message}
    """
    try:
        params = UpdateNoteParams(
            note_id=note_id, title=title, content=content, tags=tags, images=images or [], audio_uri=audio_uri
        )
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        await _runtime(ctx).notes.update_note(params.to_input())
    except NoteNotFoundError as e:
        return {"success": False, "error": str(e)}
    except StorageError as e:
        logger.error(f"update_note failed: {e}")
        return {"success": False, "error": str(e)}

    return {"success": True, "note_id": params.note_id, "message": "Memory updated"}


@mcp.tool()
async def delete_note(note_id: int, ctx: Context) -> dict[str, Any]:
    """Delete a memory together with its photos and embeddings."""
    try:
        params = NoteIdParams(note_id=note_id)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    deleted = await _runtime(ctx).notes.delete_note(params.note_id)
    if not deleted:
        return {"success": False, "error": f"Note {params.note_id} not found"}
    return {"success": True, "message": f"Deleted note {params.note_id}"}


@mcp.tool()
async def get_note(note_id: int, ctx: Context) -> dict[str, Any]:
    """Fetch one memory with its tags, photos and recall script."""
    try:
        params = NoteIdParams(note_id=note_id)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    note = await _runtime(ctx).notes.get_note(params.note_id)
    if note is None:
        return {"success": False, "error": f"Note {params.note_id} not found"}
    return {"success": True, "note": _note_to_dict(note)}


@mcp.tool()
async def list_notes(ctx: Context) -> dict[str, Any]:
    """List every memory, newest first."""
    notes = await _runtime(ctx).notes.list_notes()
    return {"success": True, "total": len(notes), "notes": [_note_to_dict(n) for n in notes]}


@mcp.tool()
async def search_notes(query: str, ctx: Context) -> dict[str, Any]:
    """Find memories whose title, content or tags contain ``query``."""
    try:
        params = SearchNotesParams(query=query)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    notes = await _runtime(ctx).notes.search_notes(params.query)
    return {"success": True, "total": len(notes), "notes": [_note_to_dict(n) for n in notes]}


# =============================================================================
# CHAT / QUIZ / REMINISCE
# =============================================================================


@mcp.tool()
async def ask_memories(question: str, ctx: Context, top_k: int | None = None) -> dict[str, Any]:
    """Ask a question about your own memories.

    The answer is grounded on the most relevant saved note.

    Returns:
        {success, answer, notes: [{note_id, title, similarity_score, match_type}]}
    """
    try:
        params = AskMemoriesParams(question=question, top_k=top_k)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        answer = await _runtime(ctx).chat.answer(params.question, params.top_k)
    except ModelNotReadyError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"ask_memories failed: {e}")
        return {"success": False, "error": f"Could not answer: {e}"}

    return {
        "success": True,
        "answer": answer.text,
        "notes": [
            {
                "note_id": n.note_id,
                "title": n.title,
                "similarity_score": round(n.similarity_score, 4),
                "match_type": n.match_type,
            }
            for n in answer.notes
        ],
    }


@mcp.tool()
async def generate_quiz(ctx: Context, total: int | None = None) -> dict[str, Any]:
    """Generate two-option quiz questions from saved memories."""
    try:
        params = GenerateQuizParams(total=total)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        quiz = await _runtime(ctx).quiz.generate_quiz(params.total)
    except ModelNotReadyError as e:
        return {"success": False, "error": str(e)}

    response: dict[str, Any] = {
        "success": True,
        "requested": quiz.requested,
        "questions": [q.model_dump() for q in quiz.questions],
    }
    if quiz.message:
        response["message"] = quiz.message
    return response


@mcp.tool()
async def start_reminisce(ctx: Context, count: int | None = None) -> dict[str, Any]:
    """Pick memories to revisit and return their recall scripts."""
    try:
        params = StartReminisceParams(count=count)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    session = await _runtime(ctx).reminisce.start_session(params.count)
    response: dict[str, Any] = {
        "success": True,
        "notes": [
            {
                "note_id": n.id,
                "title": n.title,
                "recall_script": n.recall_script,
                "images": [img.uri for img in n.images],
                "audio_uri": n.audio_uri,
            }
            for n in session.notes
        ],
    }
    if session.message:
        response["message"] = session.message
    return response


@mcp.tool()
async def complete_reminisce(note_ids: list[int], ctx: Context) -> dict[str, Any]:
    """Record that the given memories were shown in a reminisce session."""
    try:
        params = CompleteReminisceParams(note_ids=note_ids)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    outcomes = await _runtime(ctx).reminisce.mark_notes_as_shown(params.note_ids)
    marked = [o.entity_id for o in outcomes if o.status == "completed"]
    failed = [o.entity_id for o in outcomes if o.status != "completed"]
    return {"success": True, "marked": marked, "failed": failed}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Main entry point for the memoriq MCP server."""
    transport_mode = os.getenv("MEMORIQ_TRANSPORT_MODE", "stdio")

    logger.info(f"Starting memoriq MCP server ({transport_mode})")
    logger.info(f"Database: {settings.storage.db_path}")

    if transport_mode == "stdio":
        mcp.run(transport="stdio")
    else:
        port = int(os.getenv("MEMORIQ_SERVER_PORT", "8000"))
        host = os.getenv("MEMORIQ_SERVER_HOST", "127.0.0.1")
        mcp.run(transport="http", host=host, port=port, stateless_http=True)


if __name__ == "__main__":
    main()
