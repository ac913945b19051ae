# botrouter/transport/schemas.py
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from botrouter.core.domain import DetailedClassification, Message, ProcessResult


class InboundMessageIn(BaseModel):
    id: str = Field(min_length=1, max_length=256)
    conversation_id: str = Field(min_length=1, max_length=128)
    sender_id: str = Field(min_length=1, max_length=128)
    text: str = Field(default="", max_length=4096)
    timestamp: datetime
    from_self: bool = False
    media: str | None = Field(default=None, max_length=2048)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps from the gateway are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            text=self.text,
            timestamp=self.timestamp,
            from_self=self.from_self,
            media=self.media,
        )


class ProcessOut(BaseModel):
    should_reply: bool
    response: str | None = None
    category: str | None = None
    handler: str | None = None
    reason: str | None = None
    sent: bool = False

    @classmethod
    def from_result(cls, result: ProcessResult) -> "ProcessOut":
        return cls(
            should_reply=result.should_reply,
            response=result.response,
            category=result.category.value if result.category else None,
            handler=result.handler,
            reason=result.reason,
            sent=result.sent,
        )


class CleanupOut(BaseModel):
    expired: int


class ClassifyOut(BaseModel):
    category: str
    confidence: float
    sentiment: str
    keywords: list[str] = []
    matched_categories: list[str] = []
    secondary_categories: list[str] = []
    keyword_groups: dict[str, list[str]] = {}

    @classmethod
    def from_detailed(cls, detailed: DetailedClassification) -> "ClassifyOut":
        primary = detailed.primary
        return cls(
            category=primary.category.value,
            confidence=primary.confidence,
            sentiment=primary.sentiment.value,
            keywords=list(primary.keywords),
            matched_categories=[c.value for c in detailed.matched_categories],
            secondary_categories=[c.value for c in detailed.secondary_categories],
            keyword_groups={name: list(words) for name, words in detailed.keyword_groups.items()},
        )
