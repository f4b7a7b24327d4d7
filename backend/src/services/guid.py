"""
GUID service for series and event identifiers.

GUIDs are the slugs used in API paths and in a series' template link.

GUID Format: {prefix}_{base32_uuid}
- prefix: 3-character entity type identifier (ser, evt)
- base32_uuid: 26-character Crockford Base32 encoded UUIDv7
"""

import re
import uuid
from typing import Optional, Tuple

import base32_crockford
from uuid_extensions import uuid7

ENTITY_PREFIXES = {
    "ser": "EventSeries",
    "evt": "Event",
}

# Format: {3-char prefix}_{26-char Crockford Base32}
GUID_PATTERN = re.compile(
    r"^(ser|evt)_[0-9A-HJKMNP-TV-Za-hjkmnp-tv-z]{26}$",
    re.IGNORECASE
)


class GuidService:
    """
    Static helpers for encoding, decoding and validating GUIDs.

    Usage:
        >>> guid = GuidService.encode_uuid(GuidService.generate_uuid(), "ser")
        >>> GuidService.validate_guid(guid, "ser")
        True
    """

    @staticmethod
    def generate_uuid() -> uuid.UUID:
        """Generate a new time-ordered UUIDv7."""
        return uuid7()

    @staticmethod
    def encode_uuid(uuid_value: uuid.UUID, prefix: str) -> str:
        """
        Encode a UUID to a GUID string.

        Args:
            uuid_value: UUID to encode
            prefix: Entity type prefix (ser, evt)

        Returns:
            GUID string (e.g., "ser_01hgw2bbg...")

        Raises:
            ValueError: If prefix is invalid
        """
        if prefix not in ENTITY_PREFIXES:
            raise ValueError(
                f"Invalid prefix '{prefix}'. "
                f"Valid prefixes: {', '.join(ENTITY_PREFIXES.keys())}"
            )

        uuid_bytes = uuid_value if isinstance(uuid_value, bytes) else uuid_value.bytes
        encoded = base32_crockford.encode(int.from_bytes(uuid_bytes, "big")).zfill(26)
        return f"{prefix}_{encoded.lower()}"

    @staticmethod
    def decode_guid(guid: str) -> Tuple[str, uuid.UUID]:
        """
        Decode a GUID string to its components.

        Returns:
            Tuple of (prefix, UUID)

        Raises:
            ValueError: If the GUID format is invalid
        """
        if not guid:
            raise ValueError("GUID cannot be empty")

        if not GUID_PATTERN.match(guid):
            raise ValueError(
                f"Invalid GUID format: {guid}. "
                f"Expected format: {{prefix}}_{{26-char base32}}"
            )

        prefix = guid[:3].lower()
        try:
            uuid_int = base32_crockford.decode(guid[4:].upper())
            return prefix, uuid.UUID(bytes=uuid_int.to_bytes(16, "big"))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid GUID encoding: {e}")

    @staticmethod
    def validate_guid(guid: Optional[str], expected_prefix: Optional[str] = None) -> bool:
        """
        Validate a GUID format.

        Args:
            guid: GUID string to validate
            expected_prefix: Optional expected prefix for type checking

        Returns:
            True if valid, False otherwise
        """
        if not guid or not GUID_PATTERN.match(guid):
            return False
        if expected_prefix:
            return guid[:3].lower() == expected_prefix.lower()
        return True

    @staticmethod
    def get_entity_type(guid: str) -> Optional[str]:
        """Get the entity type name from a GUID (EventSeries, Event) or None."""
        if not guid or len(guid) < 3:
            return None
        return ENTITY_PREFIXES.get(guid[:3].lower())

    @staticmethod
    def parse_guid(guid: str, expected_prefix: str) -> uuid.UUID:
        """
        Parse a GUID string to UUID, validating the prefix.

        Args:
            guid: GUID string
            expected_prefix: Expected entity prefix

        Returns:
            UUID object

        Raises:
            ValueError: If format invalid or prefix doesn't match
        """
        prefix, uuid_value = GuidService.decode_guid(guid)
        if prefix != expected_prefix.lower():
            raise ValueError(
                f"GUID prefix mismatch. Expected '{expected_prefix}', got '{prefix}'"
            )
        return uuid_value
