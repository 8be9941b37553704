"""
Request models for the chat endpoints.

Field limits:
- message: 1..2000 characters
- temperature, topP: 0..1
- history.maxMessages: 2..20
- conversationHistory[].content: 1..4000 characters
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from gateway.models.base import CamelModel
from gateway.services.sessions.context import ConversationTurn, HistoryOptions
from gateway.services.sources.selection import SourceSelection

InstructionType = Literal["default", "business", "technical", "customer_service", "concise", "detailed"]
ContextWeight = Literal["light", "balanced", "heavy"]
Route = Literal["agent", "knowledge-base"]


class HistorySettings(CamelModel):
    enabled: bool = True
    max_messages: int = Field(6, ge=2, le=20)
    context_weight: ContextWeight = "balanced"

    def to_options(self) -> HistoryOptions:
        return HistoryOptions(
            enabled=self.enabled,
            max_messages=self.max_messages,
            context_weight=self.context_weight,
        )


class ConversationMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)
    timestamp: Optional[datetime] = None

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(
            role=self.role,
            content=self.content,
            timestamp=self.timestamp.timestamp() if self.timestamp else None,
        )


class DataSources(CamelModel):
    """Client-declared source allow-list."""

    websites: List[str] = Field(default_factory=list)
    pdfs: List[str] = Field(default_factory=list)
    documents: List[str] = Field(default_factory=list)

    def to_selection(self) -> SourceSelection:
        return SourceSelection(
            websites=tuple(self.websites),
            pdfs=tuple(self.pdfs),
            documents=tuple(self.documents),
        )


class ChatRequest(CamelModel):
    """Body of POST /chat and POST /chat/stream."""

    message: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = Field(None, min_length=1, max_length=200)
    data_sources: Optional[DataSources] = None
    model: Optional[str] = Field(None, max_length=200)
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    top_p: Optional[float] = Field(None, ge=0.0, le=1.0)
    instruction_type: InstructionType = "default"
    history: HistorySettings = Field(default_factory=HistorySettings)
    conversation_history: Optional[List[ConversationMessage]] = None
    route: Optional[Route] = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value.strip()


class RoutePreviewRequest(CamelModel):
    """Body of POST /chat/route."""

    message: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = Field(None, min_length=1, max_length=200)
