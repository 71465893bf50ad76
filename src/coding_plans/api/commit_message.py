from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from coding_plans.core.deps import get_commit_message_generator
from coding_plans.providers.commit_message import CommitLanguage, CommitMessageGenerator

router = APIRouter()


class CommitMessageRequest(BaseModel):
    diff: str
    vendor: str | None = None
    model: str | None = None
    language: CommitLanguage | None = None


class CommitMessageResponse(BaseModel):
    message: str
    vendor: str
    model: str
    truncated: bool


@router.post("/commit-message", response_model=CommitMessageResponse)
async def generate_commit_message(
    body: CommitMessageRequest,
    generator: CommitMessageGenerator = Depends(get_commit_message_generator),
) -> CommitMessageResponse:
    result = await generator.generate(body.diff, vendor=body.vendor, model_id=body.model, language=body.language)
    return CommitMessageResponse(
        message=result.message,
        vendor=result.vendor,
        model=result.model_id,
        truncated=result.truncated,
    )
