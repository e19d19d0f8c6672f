"""Provider discovery endpoint."""
from typing import Any

from fastapi import APIRouter, Depends

from xybatch.api.deps import get_providers
from xybatch.providers.registry import ProviderRegistry

router = APIRouter()


@router.get("/providers")
def list_providers(providers: ProviderRegistry = Depends(get_providers)) -> list[dict[str, Any]]:
    """Registered image providers with their size and input constraints."""
    return [providers.get(name).describe() for name in providers.names()]
