"""
Feed endpoints:
  POST /feed/              — ranked page for a viewer / session / refresh nonce
  POST /feed/impressions   — client-confirmed impressions
  POST /feed/interactions  — append to the interaction log (views, likes, skips)

The ranking itself lives in feed_ranker.ranking.ranker; these handlers only
translate between HTTP and the Ranker.
"""
import logging

from fastapi import APIRouter, Depends, Request, Response, status
from opentelemetry import trace

from feed_ranker.ranking.ranker import Ranker
from feed_ranker.schemas import (
    ErrorBody,
    FeedRequest,
    FeedResponse,
    ImpressionRecord,
    InteractionRecord,
)

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorBody},
    500: {"model": ErrorBody},
    504: {"model": ErrorBody},
}


def get_ranker(request: Request) -> Ranker:
    return request.app.state.ranker


@router.post("/", response_model=FeedResponse, responses=ERROR_RESPONSES)
async def get_feed(body: FeedRequest, ranker: Ranker = Depends(get_ranker)):
    return await ranker.rank(body)


@router.post(
    "/impressions",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def record_impressions(body: ImpressionRecord, ranker: Ranker = Depends(get_ranker)):
    """
    Record that a viewer saw specific posts.
    Typically called by the client after rendering a page.
    """
    with tracer.start_as_current_span("record_impressions") as span:
        queued = ranker.record_impressions(body)
        span.set_attribute("impressions.queued", queued)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/interactions",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def record_interaction(body: InteractionRecord, ranker: Ranker = Depends(get_ranker)):
    ranker.record_interaction(body)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
