from fastapi import HTTPException, status

from app.services.llm import LLMConfigError, LLMRequestError


def llm_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, LLMConfigError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Model provider is not configured")
    if isinstance(exc, LLMRequestError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Model provider request failed")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unexpected model failure")


def not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
