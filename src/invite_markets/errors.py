"""Error taxonomy shared by services and routers.

Most errors are ``HTTPException`` subclasses so services can raise them
directly and FastAPI renders ``{"detail": ...}``.  ``PaymentFailed`` is the
exception: it carries the facilitator's exact status, body and headers and is
rendered verbatim by the handler registered in ``main.py``.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ListingNotFound(HTTPException):
    def __init__(self, detail: str = "Listing not found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ListingUnavailable(HTTPException):
    def __init__(self, detail: str = "Listing not available") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ListingSoldOut(HTTPException):
    def __init__(self, detail: str = "Listing sold out") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ListingConflict(HTTPException):
    def __init__(self, detail: str = "Could not allocate a unique listing slug") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidSignature(HTTPException):
    def __init__(self, detail: str = "Invalid signature") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class SignatureExpired(HTTPException):
    def __init__(self, detail: str = "Signature expired") -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class InvalidRequest(HTTPException):
    def __init__(self, detail: str) -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class UpstreamUnavailable(HTTPException):
    def __init__(self, detail: str = "Upstream service unavailable") -> None:
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class PaymentFailed(Exception):
    """Non-200 settlement outcome, forwarded to the buyer unchanged."""

    def __init__(
        self,
        status_code: int,
        body: Any,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(f"Payment failed with status {status_code}")
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
