from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


class MileageLookupError(Exception):
    pass


@dataclass(frozen=True)
class MileageQuote:
    miles: Decimal
    provider: str
    avoided_tolls: bool = False


class MileageAdapter(Protocol):
    name: str

    def quote(self, origin: str, destination: str, *, avoid_tolls: bool = False) -> MileageQuote: ...
