from __future__ import annotations

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.deps import get_actor
from app.api.errors import raise_http_error
from app.domain.errors import ReimbursementError
from app.domain.models import MileageRateCreate, MileageRateEffectiveRead, MileageRateRead
from app.domain.permissions import Actor
from app.services.mileage_rate_service import MileageRateService

router = APIRouter()


def get_mileage_rate_service() -> MileageRateService:
    return MileageRateService()


CurrentActor = Annotated[Actor, Depends(get_actor)]
Service = Annotated[MileageRateService, Depends(get_mileage_rate_service)]


@router.post("", response_model=MileageRateRead, status_code=status.HTTP_201_CREATED)
def create_rate(payload: MileageRateCreate, actor: CurrentActor, service: Service) -> MileageRateRead:
    try:
        return MileageRateRead.model_validate(service.create_rate(actor, payload))
    except ReimbursementError as exc:
        raise_http_error(exc)


@router.get("", response_model=list[MileageRateRead])
def list_rates(_actor: CurrentActor, service: Service) -> list[MileageRateRead]:
    return [MileageRateRead.model_validate(item) for item in service.list_rates()]


@router.get("/effective", response_model=MileageRateEffectiveRead)
def effective_rate(on_date: date, _actor: CurrentActor, service: Service) -> MileageRateEffectiveRead:
    return MileageRateEffectiveRead(on_date=on_date, rate=service.effective_rate(on_date))
