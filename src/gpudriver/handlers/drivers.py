"""Routes for reconciling driver resources."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from ..dependencies.context import RequestContext, context_dependency
from ..exceptions import UnknownDriverError
from ..models.v1.drivers import DriverStatus

router = APIRouter()
"""Router to mount into the application."""

__all__ = ["router"]

_NAME_PATH = Path(
    title="Name of NVIDIADriver",
    examples=["default"],
    pattern=r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$",
)


@router.get(
    "/drivers",
    summary="Last reconcile results",
    response_model_by_alias=True,
    tags=["drivers"],
)
async def get_drivers(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> list[DriverStatus]:
    return [DriverStatus.from_result(r) for r in context.queue.list_results()]


@router.get(
    "/drivers/{name}",
    summary="Last reconcile result for a driver",
    response_model_by_alias=True,
    responses={404: {"description": "Driver has not been reconciled"}},
    tags=["drivers"],
)
async def get_driver(
    name: Annotated[str, _NAME_PATH],
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> DriverStatus:
    result = context.queue.get_result(name)
    if result is None:
        raise UnknownDriverError(name)
    return DriverStatus.from_result(result)


@router.post(
    "/drivers/{name}/reconcile",
    summary="Request a reconcile pass",
    status_code=status.HTTP_202_ACCEPTED,
    tags=["drivers"],
)
async def post_reconcile(
    name: Annotated[str, _NAME_PATH],
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> None:
    context.rebind_logger(driver=name)
    context.logger.info("Received reconcile trigger")
    await context.queue.trigger(name)
