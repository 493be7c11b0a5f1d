from dataclasses import asdict, dataclass
from typing import List


@dataclass(frozen=True)
class Shortage:
    """One order line that could not be reserved."""
    variant_id: int
    requested: int
    available: int


class SalesError(Exception):
    """Base class for errors surfaced to the caller of a sales operation."""
    status_code = 500
    code = "internal_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class ValidationError(SalesError):
    status_code = 400
    code = "validation_error"


class NotFoundError(SalesError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, identifier):
        super().__init__(f"{resource} {identifier} not found")
        self.resource = resource
        self.identifier = identifier

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update(resource=self.resource, id=self.identifier)
        return body


class InsufficientStockError(SalesError):
    """Raised when one or more lines could not be reserved.

    The first shortage is exposed as ``variant_id`` / ``requested`` /
    ``available``; ``shortages`` holds every failing line.
    """
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortages: List[Shortage]):
        self.shortages = list(shortages)
        first = self.shortages[0]
        super().__init__(
            f"insufficient stock for variant {first.variant_id}: "
            f"requested={first.requested}, available={first.available}"
        )

    @property
    def variant_id(self) -> int:
        return self.shortages[0].variant_id

    @property
    def requested(self) -> int:
        return self.shortages[0].requested

    @property
    def available(self) -> int:
        return self.shortages[0].available

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["shortages"] = [asdict(s) for s in self.shortages]
        return body


class TransientError(SalesError):
    """Timeout or connection failure. The whole operation may be retried."""
    status_code = 503
    code = "transient_error"


class InternalError(SalesError):
    status_code = 500
    code = "internal_error"


def enum_member(enum_cls, value, label: str):
    """Coerces ``value`` to a member of ``enum_cls`` or raises ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"invalid {label} {value!r}; expected one of: {allowed}") from None
