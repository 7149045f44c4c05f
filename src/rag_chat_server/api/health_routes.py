from typing import Annotated

from fastapi import APIRouter, Depends

from ..llm.manager import ChatProviderManager
from .dependencies import get_chat_manager

router = APIRouter(tags=["health"])


@router.get("/health")
def health(chat_manager: Annotated[ChatProviderManager, Depends(get_chat_manager)]):
    return {"status": "ok", "chat_provider": chat_manager.status().current}
