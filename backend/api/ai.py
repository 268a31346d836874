"""
AI writing-assistant routes.

- POST /api/ai/suggestions    titles, improvements, tags (metered)
- POST /api/ai/generate       full draft (premium/admin)
- POST /api/ai/seo-optimize   SEO recommendations + score (metered)
- GET  /api/ai/usage          current quota status

Errors:
    429: Monthly AI limit reached (quota_exceeded)
    403: Premium required
    502: Completion provider failed
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.api.deps import get_ai_service
from backend.core.auth import get_current_actor
from backend.features.ai.service import MAX_WORD_COUNT, AIService
from backend.models.actor import Actor


router = APIRouter(prefix="/api/ai", tags=["ai"])


class SuggestionsRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = ""
    category: Optional[str] = None


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    word_count: int = Field(500, ge=1, le=MAX_WORD_COUNT, alias="wordCount")
    tone: str = "professional"

    model_config = {"populate_by_name": True}


class SeoRequest(BaseModel):
    title: str = ""
    content: str = ""
    target_keywords: Optional[List[str]] = Field(None, alias="targetKeywords")

    model_config = {"populate_by_name": True}


@router.post("/suggestions")
def suggestions(
    body: SuggestionsRequest,
    actor: Actor = Depends(get_current_actor),
    ai: AIService = Depends(get_ai_service),
):
    return {"success": True, "data": ai.generate_suggestions(actor, body.title, body.content, body.category)}


@router.post("/generate")
def generate(
    body: GenerateRequest,
    actor: Actor = Depends(get_current_actor),
    ai: AIService = Depends(get_ai_service),
):
    return {"success": True, "data": ai.generate_content(actor, body.prompt, body.word_count, body.tone)}


@router.post("/seo-optimize")
def seo_optimize(
    body: SeoRequest,
    actor: Actor = Depends(get_current_actor),
    ai: AIService = Depends(get_ai_service),
):
    return {"success": True, "data": ai.optimize_for_seo(actor, body.title, body.content, body.target_keywords)}


@router.get("/usage")
def usage(
    actor: Actor = Depends(get_current_actor),
    ai: AIService = Depends(get_ai_service),
):
    return {"success": True, "data": ai.usage(actor).to_dict()}
