"""FastAPI routes for conversation CRUD and streamed generation."""

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from chattree.conversations.schemas import (
    ConversationSummary,
    CreateConversationRequest,
    GenerateRequest,
    PatchConversationRequest,
    SummarizeResponse,
)
from chattree.conversations.service import (
    ConversationLimitError,
    ConversationNotFoundError,
    ConversationService,
    MessageTooLongError,
    ModelNotAvailableError,
)
from chattree.conversations.store import StorageError
from chattree.generation.service import GenerationRun
from chattree.models import Conversation, FinalAnswerUpdate, Message
from chattree.trees.tree import InvalidOperationError, MessageNotFoundError, StructuralError

router = APIRouter(prefix="/api/conversations", tags=["conversations"])

# Written after the final answer so buffering proxies flush it
STREAM_PADDING = " " * 4096


def get_conversation_service() -> ConversationService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("ConversationService not initialized")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: CreateConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> Conversation:
    try:
        return await service.create_conversation(request)
    except ModelNotAvailableError as e:
        raise HTTPException(status_code=410, detail=str(e))


@router.get("")
async def list_conversations(
    service: ConversationService = Depends(get_conversation_service),
) -> list[ConversationSummary]:
    return await service.list_conversations()


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> Conversation:
    try:
        return await service.get_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (StructuralError, StorageError) as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    request: PatchConversationRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> Conversation:
    try:
        return await service.update_title(conversation_id, request.title)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> None:
    try:
        await service.delete_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{conversation_id}/messages/{message_id}/path")
async def get_message_path(
    conversation_id: str,
    message_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> list[Message]:
    try:
        return await service.get_path(conversation_id, message_id)
    except (ConversationNotFoundError, MessageNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StructuralError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{conversation_id}/summarize")
async def summarize_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> SummarizeResponse:
    try:
        return SummarizeResponse(title=await service.summarize(conversation_id))
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ModelNotAvailableError as e:
        raise HTTPException(status_code=410, detail=str(e))


@router.post("/{conversation_id}", response_model=None)
async def generate(
    conversation_id: str,
    request: GenerateRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> StreamingResponse:
    try:
        run = await service.start_generation(conversation_id, request)
    except (ConversationNotFoundError, MessageNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ModelNotAvailableError as e:
        raise HTTPException(status_code=410, detail=str(e))
    except ConversationLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except (InvalidOperationError, MessageTooLongError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (StructuralError, StorageError) as e:
        raise HTTPException(status_code=500, detail=str(e))

    return StreamingResponse(
        _stream_ndjson(run),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _stream_ndjson(run: GenerationRun) -> AsyncIterator[str]:
    """One JSON event per line. Closing the stream early cancels the run."""
    try:
        async for event in run:
            yield event.model_dump_json() + "\n"
            if isinstance(event, FinalAnswerUpdate):
                yield STREAM_PADDING
    finally:
        await run.cancel()
