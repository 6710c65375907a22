from fastapi import APIRouter, Depends

from sourcechat.config import Settings
from sourcechat.dependencies import get_app_settings, get_provider_factory
from sourcechat.models.schemas import ProviderInfo, ProviderListResponse
from sourcechat.services.providers.factory import ProviderFactory

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("", response_model=ProviderListResponse)
async def list_providers(
    providers: ProviderFactory = Depends(get_provider_factory),
    settings: Settings = Depends(get_app_settings),
):
    """Providers with an API key configured, and the model each one uses."""
    return ProviderListResponse(
        default=settings.default_provider,
        providers=[ProviderInfo(**p) for p in providers.available_providers()],
    )
