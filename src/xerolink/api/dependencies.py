"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Header, Request

from xerolink.exceptions import ValidationError
from xerolink.service import XeroCoordinator


def get_coordinator(request: Request) -> XeroCoordinator:
    coordinator: XeroCoordinator = request.app.state.coordinator
    return coordinator


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """The caller's user id; session handling lives in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise ValidationError("X-User-Id header is required")
    return x_user_id.strip()


CoordinatorDep = Annotated[XeroCoordinator, Depends(get_coordinator)]
UserIdDep = Annotated[str, Depends(get_user_id)]
