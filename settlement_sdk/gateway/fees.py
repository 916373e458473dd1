"""
Translation of Gateway fee-rejection messages.

The Gateway API reports an insufficient ``maxFee`` only in prose, e.g.
``"Insufficient max fee: expected at least 0.0123"``. This module is the
one place that knows that wording. When nothing matches, callers get
``None`` and must surface the original rejection untouched.
"""
import json
import re
import logging
from typing import Any, Optional, Union

from ..exceptions import ValidationError
from ..utils import to_micros

logger = logging.getLogger(__name__)

# Amounts in these messages are USDC decimals, not micros
FEE_HINT_PATTERNS = (
    re.compile(r"expected at least\s*\$?\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
    re.compile(r"minimum (?:max )?fee (?:is|of)\s*\$?\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
)


def _message_text(body: Union[str, bytes, dict, list, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    parsed: Any = body
    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except ValueError:
            return body
    if isinstance(parsed, list) and parsed:
        parsed = parsed[0]
    if isinstance(parsed, dict):
        message = parsed.get("message")
        if isinstance(message, str) and message:
            return message
        error = parsed.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return body if isinstance(body, str) else json.dumps(body)


def parse_fee_hint(body: Union[str, bytes, dict, list, None]) -> Optional[int]:
    """
    Extract the minimum fee advertised by a Gateway rejection.

    Args:
        body: Raw response body (text or already-decoded JSON)

    Returns:
        Minimum fee in micros, or None when the body carries no
        recognisable hint
    """
    text = _message_text(body)
    for pattern in FEE_HINT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            return to_micros(match.group(1))
        except ValidationError:
            logger.warning(f"Unreadable fee hint {match.group(1)!r} in Gateway rejection")
            return None
    return None
