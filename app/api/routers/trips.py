from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from app.adapters.base import MileageAdapter
from app.adapters.http_adapter import get_mileage_adapter
from app.api.deps import get_actor
from app.api.errors import raise_http_error
from app.domain.errors import ReimbursementError
from app.domain.models import MileageLookupRequest, TripCreate, TripMileageUpdate, TripRead, TripUpdate
from app.domain.permissions import Actor
from app.services.trip_service import TripService

router = APIRouter()


def get_trip_service() -> TripService:
    return TripService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Service = Annotated[TripService, Depends(get_trip_service)]
Adapter = Annotated[MileageAdapter, Depends(get_mileage_adapter)]


@router.post("", response_model=TripRead, status_code=status.HTTP_201_CREATED)
def create_trip(payload: TripCreate, actor: CurrentActor, service: Service) -> TripRead:
    try:
        return TripRead.model_validate(service.add_trip(actor, payload))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("", response_model=list[TripRead])
def list_trips(
    actor: CurrentActor,
    service: Service,
    month: int | None = None,
    year: int | None = None,
) -> list[TripRead]:
    try:
        return [TripRead.model_validate(item) for item in service.list_trips(actor, month=month, year=year)]
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("/{trip_id}", response_model=TripRead)
def get_trip(trip_id: str, actor: CurrentActor, service: Service) -> TripRead:
    try:
        return TripRead.model_validate(service.get_trip(actor, trip_id))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.patch("/{trip_id}", response_model=TripRead)
def update_trip(trip_id: str, payload: TripUpdate, actor: CurrentActor, service: Service) -> TripRead:
    try:
        return TripRead.model_validate(service.edit_trip(actor, trip_id, payload))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.delete("/{trip_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_trip(trip_id: str, actor: CurrentActor, service: Service) -> Response:
    try:
        service.delete_trip(actor, trip_id)
    except ReimbursementError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{trip_id}/mileage", response_model=TripRead)
def apply_mileage(trip_id: str, payload: TripMileageUpdate, actor: CurrentActor, service: Service) -> TripRead:
    try:
        return TripRead.model_validate(service.apply_mileage(actor, trip_id, payload.miles, payload.source))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.post("/{trip_id}/mileage/lookup", response_model=TripRead)
def lookup_mileage(
    trip_id: str,
    actor: CurrentActor,
    service: Service,
    adapter: Adapter,
    payload: MileageLookupRequest | None = None,
) -> TripRead:
    avoid_tolls = payload.avoid_tolls if payload is not None else False
    try:
        return TripRead.model_validate(service.lookup_mileage(actor, trip_id, adapter, avoid_tolls=avoid_tolls))
    except ReimbursementError as exc:
        raise_http_error(exc)
