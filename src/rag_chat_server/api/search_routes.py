"""
Search Routes

Direct access to the retrieval engine. Callers are identified the same way
as for chat, so the embedding-tier rate limit applies per client.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends, Request, status

from ..moderation import client_identifier
from ..retrieval.engine import RetrievalEngine
from .dependencies import get_retrieval_engine
from .models import SearchRequest, SearchResult

router = APIRouter(tags=["search"])


@router.post(
    "/search",
    response_model=List[SearchResult],
    summary="Ranked document search",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    request: Request,
    engine: Annotated[RetrievalEngine, Depends(get_retrieval_engine)],
) -> List[SearchResult]:
    """
    Return up to ``k`` documents for ``query``.

    Rate-limited clients still receive results, served by keyword matching
    instead of embeddings.
    """
    return await engine.search(
        req.query,
        k=req.k,
        client_identifier=client_identifier(request.headers),
    )
