"""Dietitian availability endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from factory import ServiceFactory
from adapters.rest.dependencies import (
    CurrentUser,
    domain_errors,
    get_current_user,
    get_factory,
    require_dietitian,
)
from adapters.rest.schemas import AvailabilityBody, AvailabilityOut

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/{dietitian_id}", response_model=AvailabilityOut)
async def get_availability(
    dietitian_id: str,
    user: CurrentUser = Depends(get_current_user),
    factory: ServiceFactory = Depends(get_factory),
):
    with domain_errors():
        availability = await factory.create_presence_service().get_availability(dietitian_id)
    return AvailabilityOut(dietitian_id=dietitian_id, availability=availability)


@router.put("/{dietitian_id}", response_model=AvailabilityOut)
async def set_availability(
    dietitian_id: str,
    body: AvailabilityBody,
    user: CurrentUser = Depends(require_dietitian),
    factory: ServiceFactory = Depends(get_factory),
):
    if dietitian_id != user.user_id:
        raise HTTPException(status_code=403, detail="You can only set your own availability.")
    with domain_errors():
        availability = await factory.create_presence_service().set_availability(
            dietitian_id, body.availability,
        )
    return AvailabilityOut(dietitian_id=dietitian_id, availability=availability)
