# schemas/job_models.py
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inference_worker.core.errors import InferenceFailure, WorkerError


class Job(BaseModel):
    """
    Inbound job: one request for a conversational reply.
    Unknown keys in the message body are ignored; the user key is only
    accepted under its wire name `userId`.
    """
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., alias="userId", min_length=1)
    query: str = Field(..., min_length=1)

    @field_validator("user_id", "query", mode="before")
    @classmethod
    def _require_text(cls, value):
        """Reject non-strings outright instead of coercing them."""
        if not isinstance(value, str):
            raise ValueError("must be a string")
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class JobResult(BaseModel):
    """Outbound result published once a job succeeds."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    response: str = Field(..., min_length=1)

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True)


class Turn(BaseModel):
    """One (query, response) exchange in a user's transcript."""
    query: str
    response: str

    @property
    def size(self) -> int:
        return len(self.query) + len(self.response)


class ConversationContext(BaseModel):
    """Ordered transcript for one user, oldest turn first."""
    user_id: str
    turns: List[Turn] = Field(default_factory=list)

    @classmethod
    def empty(cls, user_id: str) -> "ConversationContext":
        return cls(user_id=user_id, turns=[])

    @property
    def is_empty(self) -> bool:
        return not self.turns

    @property
    def size(self) -> int:
        return sum(turn.size for turn in self.turns)


# ============================================================================
# PIPELINE STATE
# ============================================================================

class JobStage(str, Enum):
    """Per-job pipeline states; PUBLISHED and DISCARDED are terminal"""
    RECEIVED = "received"
    VALIDATED = "validated"
    CONTEXT_LOADED = "context_loaded"
    INFERRED = "inferred"
    RESPONSE_VALIDATED = "response_validated"
    PERSISTED = "persisted"
    PUBLISHED = "published"
    DISCARDED = "discarded"


@dataclass
class JobOutcome:
    """
    Result of pushing one message through the pipeline.

    `last_stage` is the furthest stage reached before finishing or
    discarding, so a DISCARDED outcome still tells where it stopped.
    """
    stage: JobStage
    last_stage: JobStage
    user_id: Optional[str] = None
    result: Optional[JobResult] = None
    failure: Optional[WorkerError] = None
    persisted: bool = False
    acknowledged: Optional[bool] = None

    @property
    def published(self) -> bool:
        return self.stage == JobStage.PUBLISHED

    @property
    def discarded(self) -> bool:
        return self.stage == JobStage.DISCARDED

    @property
    def failure_kind(self) -> Optional[str]:
        if isinstance(self.failure, InferenceFailure):
            return self.failure.kind.value
        if self.failure is not None:
            return self.failure.code
        return None
