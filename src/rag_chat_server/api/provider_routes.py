"""
Chat provider selection.

Switching is explicit and takes effect for subsequent requests; failover
during a request never changes the current provider.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.errors import UnknownProviderError
from ..llm.manager import ChatProviderManager
from .dependencies import get_chat_manager
from .models import ProviderStatusResponse, SetProviderRequest

router = APIRouter(prefix="/providers", tags=["providers"])


def _status_response(manager: ChatProviderManager) -> ProviderStatusResponse:
    current, fallback, available = manager.status()
    return ProviderStatusResponse(current=current, fallback=fallback, available=available)


@router.get("", response_model=ProviderStatusResponse)
def provider_status(
    manager: Annotated[ChatProviderManager, Depends(get_chat_manager)],
) -> ProviderStatusResponse:
    return _status_response(manager)


@router.put("/current", response_model=ProviderStatusResponse)
def set_current_provider(
    req: SetProviderRequest,
    manager: Annotated[ChatProviderManager, Depends(get_chat_manager)],
) -> ProviderStatusResponse:
    try:
        manager.set_current_provider(req.name)
    except UnknownProviderError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.args[0])
    return _status_response(manager)


@router.put("/fallback", response_model=ProviderStatusResponse)
def set_fallback_provider(
    req: SetProviderRequest,
    manager: Annotated[ChatProviderManager, Depends(get_chat_manager)],
) -> ProviderStatusResponse:
    try:
        manager.set_fallback_provider(req.name)
    except UnknownProviderError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.args[0])
    return _status_response(manager)
