"""Pydantic models for the docassist API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DocumentInfo(BaseModel):
    filename: Optional[str] = Field(default=None, description="Original name of the uploaded document")
    uploaded_at: Optional[datetime] = Field(default=None, description="When the session became ready")
    file_ref: Optional[str] = None
    index_ref: Optional[str] = None
    agent_ref: Optional[str] = None
    thread_ref: Optional[str] = None


class DocumentUploadResponse(BaseModel):
    success: bool = True
    message: str = "Document processed successfully"
    info: DocumentInfo


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, description="Question about the uploaded document")


class TaskRequest(BaseModel):
    language: Optional[str] = Field(default=None, description="Output language, defaults to english")


class CitationModel(BaseModel):
    index: int = Field(..., ge=1, description="Ordinal of the [n] marker in the answer")
    quote: str
    file_ref: Optional[str] = None


class AnswerResponse(BaseModel):
    success: bool = True
    answer: str
    citations: List[CitationModel]
    attempts: int = 1
    latency_ms: float


class HistoryEntryModel(BaseModel):
    role: str
    content: str
    timestamp: int


class HistoryResponse(BaseModel):
    messages: List[HistoryEntryModel]


class ResetResponse(BaseModel):
    success: bool = True
    thread_ref: str


class CleanupResponse(BaseModel):
    success: bool
    message: str
    errors: List[str] = Field(default_factory=list)


class SessionStatusModel(BaseModel):
    initialized: bool
    has_agent: bool
    has_index: bool
    has_thread: bool
    has_file: bool
    agent_ref: Optional[str] = None
    index_ref: Optional[str] = None
    thread_ref: Optional[str] = None
    file_ref: Optional[str] = None
    ready: bool


class StatusResponse(BaseModel):
    success: bool = True
    status: SessionStatusModel
    current_document: Optional[DocumentInfo] = None
    is_ready: bool
