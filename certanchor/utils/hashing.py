"""
Deterministic hashing of certificate fields.
Each field is hashed with SHA-256, then the JSON map of field hashes is hashed
again to give the combined hash anchored on-chain.
"""

import hashlib
import json
from typing import Dict, Tuple

# Serialization order is part of the hash; never reorder.
CERTIFICATE_FIELD_ORDER = (
    "Certificate_Number",
    "name",
    "courseName",
    "Grant_Date",
    "Expiration_Date",
)


def calculate_hash(data: str) -> str:
    """Return the hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(str(data).encode("utf-8")).hexdigest()


def build_certificate_fields(
    certificate_number: str,
    name: str,
    course: str,
    grant_date: str,
    expiration_date: str
) -> Dict[str, str]:
    """Build the canonical, ordered field map for one certificate."""
    values = (certificate_number, name, course, grant_date, expiration_date)
    return dict(zip(CERTIFICATE_FIELD_ORDER, values))


def canonical_json(data: Dict) -> str:
    """Compact JSON with insertion order kept, matching what the QR payload carries."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def hash_certificate_fields(fields: Dict[str, str]) -> Tuple[Dict[str, str], str]:
    """
    Hash every field, then hash the serialized map of field hashes.

    Args:
        fields: Field map in canonical order (see build_certificate_fields)

    Returns:
        Tuple of (per-field hashes, combined hash)
    """
    hashed_fields = {key: calculate_hash(value) for key, value in fields.items()}
    combined_hash = calculate_hash(canonical_json(hashed_fields))
    return hashed_fields, combined_hash
