"""
Table QR Payload

Encoding and validation of the JSON string printed into a table QR code:

    {"restaurantId": "<id>", "restaurantName": "<name>",
     "tableNumber": <int>, "type": "restaurant_table"}

Validation happens before any network call; every failure is reported
as MalformedPayloadError with a short reason.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json

from pydantic import ValidationError

from app.core.exceptions import MalformedPayloadError
from app.schemas import QR_PAYLOAD_TYPE, TableQRPayload


def build_qr_payload(restaurant_id: str, restaurant_name: str, table_number: int) -> str:
    """Generate the string to encode into a table QR code."""
    payload = TableQRPayload(
        restaurant_id=restaurant_id,
        restaurant_name=restaurant_name,
        table_number=table_number,
        type=QR_PAYLOAD_TYPE,
    )
    return payload.model_dump_json(by_alias=True)


def validate_qr_payload(data: str) -> TableQRPayload:
    """
    Parse a scanned string into a TableQRPayload.

    Raises:
        MalformedPayloadError: Not JSON, not an object, wrong type,
            missing/invalid restaurantId or tableNumber
    """
    try:
        raw = json.loads(data)
    except (TypeError, ValueError):
        raise MalformedPayloadError("Invalid JSON format", {"reason": "invalid_json"})

    if not isinstance(raw, dict):
        raise MalformedPayloadError("QR payload must be a JSON object", {"reason": "not_an_object"})

    if raw.get("type") != QR_PAYLOAD_TYPE:
        raise MalformedPayloadError(
            f'Invalid or missing type (must be "{QR_PAYLOAD_TYPE}")',
            {"reason": "wrong_type", "type": raw.get("type")},
        )

    try:
        return TableQRPayload.model_validate(raw)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise MalformedPayloadError(
            f"Invalid table QR code: {', '.join(fields) or 'payload'}",
            {"reason": "invalid_fields", "fields": fields},
        ) from e
