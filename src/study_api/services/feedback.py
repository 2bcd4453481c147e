from __future__ import annotations

import logging
from typing import Any
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from study_api.errors import ServiceError
from study_api.models import FeedbackRow

INVALID_FEEDBACK_MESSAGE = "Invalid feedback payload."

logger = logging.getLogger(__name__)


class FeedbackPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=128)
    email: str = Field(max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    feedback: str = Field(min_length=10, max_length=1500)


def parse_feedback_payload(payload: Any) -> FeedbackPayload:
    try:
        return FeedbackPayload.model_validate(payload)
    except ValidationError as exc:
        raise ServiceError(
            INVALID_FEEDBACK_MESSAGE,
            400,
            payload={
                "detail": INVALID_FEEDBACK_MESSAGE,
                "errors": {
                    ".".join(str(part) for part in error["loc"]) or "body": error["msg"]
                    for error in exc.errors()
                },
            },
        ) from exc


def submit_feedback(session: Session, feedback: FeedbackPayload) -> str:
    feedback_id = f"fb_{uuid.uuid4().hex}"
    session.add(
        FeedbackRow(
            id=feedback_id,
            name=feedback.name,
            email=feedback.email.lower(),
            message=feedback.feedback,
        )
    )
    session.commit()
    logger.info("Stored feedback %s", feedback_id)
    return feedback_id
