"""
Remote field metadata cache.

ILSWS describes each record section (GET /user/patron/describe and
/user/patron/<section>/describe) with a list of field entries such as:

    {"name": "profile", "type": "resource", "uri": "/policy/userProfile"}
    {"name": "lastName", "type": "string", "min": 1, "max": 60}
    {"name": "standing", "type": "set", "setMembers": ["OK", "BARRED"]}

FieldSchema fetches a section once per session and keeps an immutable
snapshot of its FieldDescriptors for the lifetime of the owning service.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import UnknownWireType

logger = logging.getLogger(__name__)


class WireType(Enum):
    BOOLEAN = "boolean"
    DATE = "date"
    RESOURCE = "resource"
    SET = "set"
    STRING = "string"
    LIST = "list"
    NUMERIC = "numeric"


@dataclass(frozen=True)
class FieldDescriptor:
    """Description of one remote field."""

    name: str
    type_name: Optional[str]
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    set_members: Tuple[str, ...] = ()
    uri: Optional[str] = None

    @classmethod
    def from_remote(cls, entry: Dict[str, Any]) -> "FieldDescriptor":
        """Build a descriptor from a describe-endpoint entry."""
        return cls(
            name=entry["name"],
            type_name=entry.get("type"),
            min_length=_optional_int(entry.get("min")),
            max_length=_optional_int(entry.get("max")),
            set_members=tuple(entry.get("setMembers") or ()),
            uri=entry.get("uri"),
        )

    @property
    def wire_type(self) -> WireType:
        """
        Resolve the wire type.

        Raises:
            UnknownWireType: If the remote type is not one the builder handles
        """
        try:
            return WireType(self.type_name)
        except ValueError:
            raise UnknownWireType(self.name, self.type_name) from None


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


FieldFetcher = Callable[[str], List[Dict[str, Any]]]


class FieldSchema:
    """
    Per-session cache of field descriptors, keyed by section name.

    Each section is fetched on first use and never mutated afterwards;
    reload() swaps in a new snapshot. A lock serialises fetches so that
    concurrent callers on one service share a single fetch.
    """

    def __init__(self, fetcher: FieldFetcher):
        """
        Args:
            fetcher: Callable returning the raw field entries for a section,
                     normally ApiClient.fetch_field_descriptors
        """
        self._fetcher = fetcher
        self._sections: Dict[str, Mapping[str, FieldDescriptor]] = {}
        self._lock = threading.Lock()

    def describe(self, section: str = "patron") -> Mapping[str, FieldDescriptor]:
        """
        Get the field descriptors for a section, fetching them on first use.

        Errors raised by the fetcher propagate unchanged and nothing is cached.
        """
        snapshot = self._sections.get(section)
        if snapshot is not None:
            return snapshot

        with self._lock:
            snapshot = self._sections.get(section)
            if snapshot is None:
                snapshot = self._load(section)
                self._sections[section] = snapshot
        return snapshot

    def reload(self, section: str = "patron") -> Mapping[str, FieldDescriptor]:
        """Fetch a section again and replace its snapshot."""
        with self._lock:
            snapshot = self._load(section)
            self._sections[section] = snapshot
        return snapshot

    def clear(self) -> None:
        with self._lock:
            self._sections = {}

    def cached_sections(self) -> List[str]:
        return sorted(self._sections)

    def _load(self, section: str) -> Mapping[str, FieldDescriptor]:
        entries = self._fetcher(section)
        descriptors = {}
        for entry in entries:
            descriptor = FieldDescriptor.from_remote(entry)
            descriptors[descriptor.name] = descriptor

        logger.info(
            "Field descriptions loaded",
            extra={'section': section, 'field_count': len(descriptors)}
        )
        return MappingProxyType(descriptors)
