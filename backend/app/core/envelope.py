import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional

from app.core.errors import DecodeFailure

logger = logging.getLogger(__name__)


def decode_statement(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode one signed envelope into the statement it carries.

    Envelopes wrap a base64 payload which itself is JSON, so the statement
    is double-encoded. Nothing here depends on the signing scheme.
    """
    if not isinstance(envelope, dict):
        raise DecodeFailure("envelope is not a JSON object")
    payload = envelope.get("payload")
    if not payload:
        raise DecodeFailure("Missing payload in attestation")
    if not isinstance(payload, str):
        raise DecodeFailure("payload is not a string")

    padding = "=" * (-len(payload) % 4)
    try:
        text = base64.b64decode(payload + padding).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise DecodeFailure(f"payload is not base64 encoded UTF-8: {exc}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeFailure(f"decoded payload is not valid JSON: {exc}") from exc


def _decode_lines(ndjson: str) -> List[Dict[str, Any]]:
    statements = []
    for line in ndjson.split("\n"):
        if not line.strip():
            continue
        try:
            envelope = json.loads(line)
        except json.JSONDecodeError as exc:
            raise DecodeFailure(f"envelope is not valid JSON: {exc}") from exc
        statements.append(decode_statement(envelope))
    return statements


def decode_attestations(ndjson: str) -> List[Dict[str, Any]]:
    """
    Turn newline-delimited envelopes into decoded statements.

    A single bad line invalidates the whole input: the result is then an
    empty list, which callers read as "no usable attestation".
    """
    if not ndjson or not ndjson.strip():
        return []
    try:
        return _decode_lines(ndjson)
    except DecodeFailure as exc:
        logger.warning("Failed to decode attestations: %s", exc)
        return []


def first_statement(ndjson: str) -> Optional[Dict[str, Any]]:
    statements = decode_attestations(ndjson)
    return statements[0] if statements else None
