# Entry point for the FastAPI app
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from . import config
from .chat_client import ChatClient
from .chat_driver import AdaptiveChatDriver, ChatCouldNotCompleteError, EmptyConversationError
from .chat_service import ChatService
from .conversation_store import ConversationNotFoundError, ConversationStore
from .document_store import LocalDocumentStore
from .models.chat_models import (
    Conversation,
    FunctionCall,
    FunctionDefinition,
    Message,
    Role,
    SystemPrompt,
)
from .rag.cache_store import CacheStore
from .rag.chunk_store import VectorStore
from .rag.chunker import ChunkBatcher
from .rag.embedder import EmbeddingClient
from .rag.retriever import Retriever
from .rag.vector_cache import VectorCache

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Document chat")


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class FunctionCallModel(BaseModel):
    name: str
    arguments: str


class MessageModel(BaseModel):
    role: Role
    content: Optional[str] = None
    name: Optional[str] = None
    function_call: Optional[FunctionCallModel] = None


class FunctionModel(BaseModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class SystemPromptModel(BaseModel):
    prompt: str
    temperature: float = 0.7
    model: Optional[str] = None
    force_vector_generation: bool = False


class ChatRequest(BaseModel):
    system_prompt: SystemPromptModel
    messages: List[MessageModel]
    sources: List[str] = Field(default_factory=list)
    functions: Optional[List[FunctionModel]] = None


class CreateConversationRequest(BaseModel):
    system_prompt: SystemPromptModel
    sources: List[str] = Field(default_factory=list)


class UserMessageRequest(BaseModel):
    content: str


class EmbeddingsRequest(BaseModel):
    sources: List[str]
    force: bool = False


def to_message(model: MessageModel) -> Message:
    function_call = None
    if model.function_call is not None:
        function_call = FunctionCall(name=model.function_call.name, arguments=model.function_call.arguments)
    return Message(role=model.role, content=model.content, name=model.name, function_call=function_call)


def to_system_prompt(model: SystemPromptModel) -> SystemPrompt:
    return SystemPrompt(
        prompt=model.prompt,
        temperature=model.temperature,
        model=model.model,
        force_vector_generation=model.force_vector_generation,
    )


def from_message(message: Message) -> MessageModel:
    function_call = None
    if message.function_call is not None:
        function_call = FunctionCallModel(name=message.function_call.name, arguments=message.function_call.arguments)
    return MessageModel(role=message.role, content=message.content, name=message.name, function_call=function_call)


# ============================================================================
# SERVICE WIRING
# ============================================================================

_chat_service: Optional[ChatService] = None


def build_chat_service() -> ChatService:
    """Create the chat service and its collaborators from app.config."""
    embedding_client = EmbeddingClient()
    vector_store = VectorStore(persist_dir=config.VECTOR_STORE_DIR) if config.VECTOR_STORE_ENABLED else None
    vector_cache = VectorCache(CacheStore(), ChunkBatcher(embedding_client), vector_store=vector_store)
    retriever = Retriever(LocalDocumentStore(config.DOCUMENT_ROOT), vector_cache, embedding_client)
    driver = AdaptiveChatDriver(ChatClient())
    return ChatService(retriever, driver, ConversationStore(config.CONVERSATION_DB_PATH))


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        _chat_service = build_chat_service()
        logger.info("[STARTUP] Chat service initialized")
    return _chat_service


async def _run(call):
    """Await a service call, mapping domain errors to HTTP errors."""
    try:
        return await call
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ChatCouldNotCompleteError as e:
        logger.warning(f"[CHAT] {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except EmptyConversationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"[CHAT] Request failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {"status": "ok"}


@app.post("/chat", response_model=MessageModel)
async def chat(request: ChatRequest, service: ChatService = Depends(get_chat_service)):
    conversation = Conversation(
        system_prompt=to_system_prompt(request.system_prompt),
        messages=[to_message(m) for m in request.messages],
        sources=request.sources,
        functions=[FunctionDefinition(**f.model_dump()) for f in request.functions] if request.functions else None,
    )
    reply = await _run(service.chat(conversation))
    return from_message(reply)


@app.post("/conversations")
async def create_conversation(request: CreateConversationRequest, service: ChatService = Depends(get_chat_service)):
    conversation_id = service.get_store().create_conversation(to_system_prompt(request.system_prompt), request.sources)
    return {"id": conversation_id}


@app.post("/conversations/{conversation_id}/messages", response_model=MessageModel)
async def post_message(
    conversation_id: int,
    request: UserMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    reply = await _run(service.chat_in_conversation(conversation_id, request.content))
    return from_message(reply)


@app.get("/conversations/{conversation_id}/name")
async def chat_name(conversation_id: int, service: ChatService = Depends(get_chat_service)):
    name = await _run(service.get_chat_name(conversation_id))
    return {"name": name}


@app.get("/conversations/{conversation_id}/suggestions")
async def prompt_suggestions(conversation_id: int, service: ChatService = Depends(get_chat_service)):
    suggestions = await _run(service.get_prompt_suggestions(conversation_id))
    return {"prompts": suggestions.prompts}


@app.post("/embeddings")
async def create_embeddings(request: EmbeddingsRequest, service: ChatService = Depends(get_chat_service)):
    if not request.sources:
        raise HTTPException(status_code=400, detail="At least one source is required.")
    indexed = await _run(service.index_sources(request.sources, force=request.force))
    return {"indexed_files": indexed}
