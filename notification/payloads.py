"""
Typed payload registry.

Each notification type may register a pydantic schema for its ``data``
payload. Payloads are validated once, at the dispatch boundary; types with
no registered schema pass through untouched. Schemas allow extra keys so
templates can reference fields the schema does not name.
"""

import logging
from typing import Dict, Any, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notification.exceptions import PayloadValidationError

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMAS: Dict[str, Type[BaseModel]] = {}


def register_payload(*types: str):
    """Class decorator binding a schema to one or more notification types."""
    def decorator(schema: Type[BaseModel]) -> Type[BaseModel]:
        if not issubclass(schema, BaseModel):
            raise ValueError("Payload schema must extend pydantic.BaseModel")
        for type in types:
            PAYLOAD_SCHEMAS[type] = schema
        return schema
    return decorator


def schema_for(type: str) -> Optional[Type[BaseModel]]:
    return PAYLOAD_SCHEMAS.get(type)


def validate_payload(type: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate ``data`` against the schema registered for ``type``.

    Returns a JSON-safe dict (coerced values, extra keys kept).

    Raises:
        PayloadValidationError: if the payload does not match the schema
    """
    data = dict(data or {})
    schema = PAYLOAD_SCHEMAS.get(type)
    if schema is None:
        return data
    try:
        model = schema.model_validate(data)
    except ValidationError as e:
        errors = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        raise PayloadValidationError(type, errors) from e
    return model.model_dump(mode='json', exclude_none=True)


class _Payload(BaseModel):
    model_config = ConfigDict(extra='allow')


@register_payload(
    'booking_request', 'new_booking_request', 'booking_accepted',
    'booking_rejected', 'booking_cancelled', 'booking_confirmed',
)
class BookingPayload(_Payload):
    booking_id: int
    booking_reference: Optional[str] = None
    trip_id: Optional[int] = None
    reason: Optional[str] = None


@register_payload(
    'payment_received', 'payment_confirmed', 'payment_failed',
    'payment_refunded', 'payout_processed',
)
class PaymentPayload(_Payload):
    amount: float = Field(ge=0)
    currency: str = 'EUR'
    booking_id: Optional[int] = None
    transaction_id: Optional[str] = None


@register_payload('trip_created', 'trip_updated', 'trip_cancelled', 'trip_reminder', 'journey_started')
class TripPayload(_Payload):
    trip_id: int
    departure_city: Optional[str] = None
    arrival_city: Optional[str] = None


@register_payload('pickup_code', 'delivery_code', 'verification_code')
class CodePayload(_Payload):
    code: str = Field(min_length=1)
    booking_id: Optional[int] = None


@register_payload('delivery_code_generated', 'delivery_code_regenerated')
class DeliveryCodePayload(_Payload):
    delivery_code: str = Field(min_length=1)
    booking_id: int
    booking_reference: Optional[str] = None
