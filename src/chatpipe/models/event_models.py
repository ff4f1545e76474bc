"""
Wire models for the assistant backend.
Covers the request body shared by both calls, the one-shot reply and
the frames decoded from the text-event stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chatpipe.core.constants import EVENT_DONE, EVENT_ERROR, EVENT_MESSAGE


@dataclass(frozen=True, slots=True)
class Frame:
    """One decoded (event type, payload) unit. Consumed once, never stored."""

    event: str
    data: str

    @property
    def is_message(self) -> bool:
        return self.event == EVENT_MESSAGE

    @property
    def is_error(self) -> bool:
        return self.event == EVENT_ERROR

    @property
    def is_done(self) -> bool:
        return self.event == EVENT_DONE


class StreamRequest(BaseModel):
    """JSON body for the streaming and one-shot endpoints: {"sessionId", "message"}."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., min_length=1, alias="sessionId")
    message: str = Field(..., min_length=1)

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the backend's camelCase field names."""
        payload: dict[str, Any] = self.model_dump(by_alias=True)
        return payload


class CompletionResult(BaseModel):
    """Successful one-shot completion."""

    model_config = ConfigDict(extra="ignore")

    content: str = ""


__all__ = ["CompletionResult", "Frame", "StreamRequest"]
