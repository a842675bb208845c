from fastapi import Header, HTTPException, status

from donorhub_api.core.settings import settings


async def require_rewards_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard merchant, donation recorder and admin routes when an API key is configured."""

    if not settings.rewards_api_key:
        return

    if x_api_key != settings.rewards_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
