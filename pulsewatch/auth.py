import hmac

from fastapi import HTTPException, status

from .config import Settings


def require_report_params(**params: str | None) -> dict[str, str]:
    missing = [name for name, value in params.items() if not value]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required parameters: {', '.join(params)}",
        )
    return {name: value for name, value in params.items() if value}


def verify_device_credentials(settings: Settings, access_key: str, access_token: str) -> None:
    """Reject a report whose credentials differ from the configured pair, when one is configured."""
    if not settings.credentials_enforced:
        return
    key_ok = hmac.compare_digest(access_key.encode(), (settings.api_access_key or "").encode())
    token_ok = hmac.compare_digest(access_token.encode(), (settings.api_access_token or "").encode())
    if not (key_ok and token_ok):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid access credentials")
