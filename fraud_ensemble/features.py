"""
features.py
-----------
Builds the FeatureVector sent to the ensemble from a raw IEEE-CIS style
feature mapping (as stored alongside a transaction).

Feature groups:
  - C1..C14       counting features
  - D1..D15       time-delta features
  - M1..M9        match flags ("T" / "F" only)
  - V1..V339      Vesta engineered features
  - id_01..id_38  identity features
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, Mapping, Optional, Union

from .schemas import FeatureVector

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults applied when a raw record omits a field
# ---------------------------------------------------------------------------

DEFAULT_PRODUCT_CODE = "W"
DEFAULT_CARD1 = "13553"
DEFAULT_CARD2 = "150.0"
DEFAULT_CARD3 = "150.0"
DEFAULT_EMAIL_DOMAIN = "gmail.com"

MATCH_VALUES = frozenset({"T", "F"})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_raw_features(raw: Optional[str], transaction_id: Any = None) -> Dict[str, Any]:
    """
    Decode the JSON blob of anonymized features stored with a transaction.

    Returns an empty dict for missing or unparseable input so scoring can
    still proceed on the identifying attributes.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        decoded = json.loads(raw)
    except ValueError as exc:
        logger.warning("Failed to parse IEEE features for transaction %s: %s", transaction_id, exc)
        return {}

    if not isinstance(decoded, dict):
        logger.warning("IEEE features for transaction %s are not an object", transaction_id)
        return {}
    return decoded


def build_feature_vector(
    raw: Mapping[str, Any],
    transaction_id: Optional[Union[int, str]] = None,
    amount: Optional[float] = None,
) -> FeatureVector:
    """
    Map raw IEEE-CIS columns (``ProductCD``, ``card1``, ``C1`` ...) onto a
    FeatureVector, applying the same defaults the transaction pipeline uses.
    """
    if amount is None:
        amount = _to_float(raw.get("TransactionAmt", raw.get("TransactionAMT")))

    return FeatureVector(
        transaction_id=transaction_id,
        transaction_dt=_to_float(raw.get("TransactionDT")),
        amount=amount,
        product_code=_to_str(raw.get("ProductCD"), DEFAULT_PRODUCT_CODE),
        card1=_to_str(raw.get("card1"), DEFAULT_CARD1),
        card2=_to_str(raw.get("card2"), DEFAULT_CARD2),
        card3=_to_str(raw.get("card3"), DEFAULT_CARD3),
        card4=_to_str(raw.get("card4")),
        card5=_to_str(raw.get("card5")),
        card6=_to_str(raw.get("card6")),
        addr1=_to_float(raw.get("addr1")),
        addr2=_to_float(raw.get("addr2")),
        dist1=_to_float(raw.get("dist1")),
        dist2=_to_float(raw.get("dist2")),
        purchaser_email_domain=_to_str(raw.get("P_emaildomain"), DEFAULT_EMAIL_DOMAIN),
        recipient_email_domain=_to_str(raw.get("R_emaildomain")),
        counting_features=extract_feature_group(raw, "C", 1, 14),
        time_deltas=extract_feature_group(raw, "D", 1, 15),
        match_features=extract_match_features(raw),
        vesta_features=extract_feature_group(raw, "V", 1, 339),
        identity_features=extract_feature_group(raw, "id_", 1, 38),
        device_type=_to_str(raw.get("DeviceType")),
        device_info=_to_str(raw.get("DeviceInfo")),
    )


def extract_feature_group(
    raw: Mapping[str, Any],
    prefix: str,
    start: int,
    end: int,
) -> Dict[str, float]:
    """Collect ``prefix{start..end}`` numeric columns, skipping missing/NaN ones."""
    group: Dict[str, float] = {}
    for i in range(start, end + 1):
        key = f"{prefix}{i:02d}" if prefix == "id_" else f"{prefix}{i}"
        value = _to_float(raw.get(key))
        if value is not None:
            group[key] = value
    return group


def extract_match_features(raw: Mapping[str, Any]) -> Dict[str, str]:
    flags: Dict[str, str] = {}
    for i in range(1, 10):
        key = f"M{i}"
        value = raw.get(key)
        if isinstance(value, str) and value in MATCH_VALUES:
            flags[key] = value
    return flags


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) or math.isinf(result) else result


def _to_str(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None:
        return default
    if isinstance(value, float) and math.isnan(value):
        return default
    return str(value)
