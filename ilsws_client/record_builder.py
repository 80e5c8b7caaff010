"""
Patron record construction.

Turns a flat dict of patron attributes into the nested document ILSWS
expects, using the field table for the record mode ('new' for registration,
'overlay' for updates) and the remote field descriptions:

    {
        "resource": "/user/patron",
        "key": "123456",                      # overlay only
        "fields": {
            "firstName": "Bogus",
            "birthDate": "1962-03-07",
            "profile": {"resource": "/policy/userProfile", "key": "0_MULT"},
            "address1": [
                {"resource": "/user/patron/address1",
                 "fields": {"code": {"resource": "/policy/patronAddress1", "key": "ZIP"},
                            "data": "97209"}}
            ]
        }
    }

Construction is all-or-nothing: the first bad field raises and no partial
document is returned. The caller's attribute dict is never modified.
"""

import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config_loader import AgeRange, FieldConfig
from .date_normalizer import parse_any_date
from .errors import (
    ConfigurationError,
    FieldValidationFailed,
    InvalidFieldLength,
    InvalidSetMember,
    MissingRequiredField,
    UnknownWireType,
)
from .field_schema import FieldDescriptor, WireType
from .validator import check, validate

logger = logging.getLogger(__name__)

PATRON_RESOURCE = "/user/patron"
PHONE_RESOURCE = "/user/patron/phone"
COUNTRY_CODE_RESOURCE = "/policy/countryCode"

PATRON_KEY_RULE = r"r:^\d{1,6}$"
ADDRESS_NUMBER_RULE = "i:1,3"
TELEPHONE_RULE = "i:1000000000,9999999999"
COUNTRY_CODE_RULE = "r:^[A-Z]{2}$"

PHONE_FLAGS = ("bills", "general", "holds", "manual", "overdues")

# Fields handled outside the descriptor-driven builders
PROFILE_FIELD = "profile"
BIRTH_DATE_FIELD = "birthDate"
PHONE_LIST_FIELD = "phoneList"
KEY_FIELD = "key"


def is_blank(value: Any) -> bool:
    """None and empty strings/containers count as not supplied; False and 0 do not."""
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def get_expiration(days: Optional[int], today: Optional[date] = None) -> Optional[str]:
    """Today plus the given number of days as YYYY-MM-DD, or None without days."""
    if not days:
        return None
    return ((today or date.today()) + timedelta(days=days)).isoformat()


def calculate_age(birth_date: date, today: date) -> int:
    """Whole years between birth_date and today."""
    before_birthday = (today.month, today.day) < (birth_date.month, birth_date.day)
    return today.year - birth_date.year - int(before_birthday)


class RecordBuilder:
    """Builds ILSWS patron documents from flat attribute dicts."""

    def __init__(
        self,
        field_tables: Mapping[str, Mapping[str, FieldConfig]],
        age_ranges: Iterable[AgeRange] = (),
        online_profile: Optional[str] = None,
        online_expiration_days: Optional[int] = None,
    ):
        """
        Args:
            field_tables: Field configuration per record mode ('new', 'overlay')
            age_ranges: Ordered age ranges used to derive a missing profile
            online_profile: Profile that receives a privilege expiration date
                            on registration
            online_expiration_days: Days until that expiration
        """
        self.field_tables = dict(field_tables)
        self.age_ranges = list(age_ranges)
        self.online_profile = online_profile
        self.online_expiration_days = online_expiration_days

        self._wire_builders = {
            WireType.BOOLEAN: self._build_boolean,
            WireType.DATE: self._build_date,
            WireType.RESOURCE: self._build_resource,
            WireType.SET: self._build_set,
            WireType.STRING: self._build_string,
            WireType.NUMERIC: self._build_numeric,
        }

    @classmethod
    def from_config(cls, config_loader) -> "RecordBuilder":
        return cls(
            config_loader.get_field_tables(),
            config_loader.get_age_ranges(),
            online_profile=config_loader.get_online_profile(),
            online_expiration_days=config_loader.get_online_expiration(),
        )

    def get_field_table(self, mode: str) -> Mapping[str, FieldConfig]:
        try:
            return self.field_tables[mode]
        except KeyError:
            raise ValueError(f"Unknown record mode: {mode!r}") from None

    def prepare(
        self, attributes: Mapping[str, Any], mode: str, today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Apply aliases, profile derivation, defaults, required checks and
        validation rules for every configured field.

        Returns:
            A new dict holding the caller's attributes plus resolved values

        Raises:
            MissingRequiredField: A required field has no value
            FieldValidationFailed: A value fails its validation rule
            InvalidDateFormat: A birth date used for profile derivation is unreadable
        """
        table = self.get_field_table(mode)
        patron = dict(attributes)
        today = today or date.today()

        for name, field in table.items():
            if is_blank(patron.get(name)) and field.alias and field.alias in patron:
                patron[name] = patron[field.alias]

            if name == PROFILE_FIELD and is_blank(patron.get(name)):
                profile = self.derive_profile(patron, table, today)
                if profile:
                    patron[name] = profile

            if is_blank(patron.get(name)) and not is_blank(field.default):
                patron[name] = field.default

            value = patron.get(name)
            if is_blank(value):
                if field.required:
                    raise MissingRequiredField(name)
                continue

            if field.validation is not None and not validate(value, field.validation):
                raise FieldValidationFailed(name, value, str(field.validation))

        return patron

    def derive_profile(
        self, patron: Mapping[str, Any], table: Mapping[str, FieldConfig], today: date
    ) -> Optional[str]:
        """
        Pick a profile from the patron's age.

        The birth date comes from birthDate or its configured alias. The first
        age range containing the age wins.

        Returns:
            Profile code, or None when there is no birth date or no range matches
        """
        birth = patron.get(BIRTH_DATE_FIELD)
        birth_config = table.get(BIRTH_DATE_FIELD)
        if is_blank(birth) and birth_config is not None and birth_config.alias:
            birth = patron.get(birth_config.alias)
        if is_blank(birth):
            return None

        birth_date = date.fromisoformat(parse_any_date(str(birth), BIRTH_DATE_FIELD))
        age = calculate_age(birth_date, today)

        for age_range in self.age_ranges:
            if age_range.contains(age):
                logger.debug(
                    "Profile derived from birth date",
                    extra={'age': age, 'profile': age_range.profile}
                )
                return age_range.profile
        return None

    def build(
        self,
        attributes: Mapping[str, Any],
        mode: str,
        schema: Mapping[str, FieldDescriptor],
        key: Optional[str] = None,
        addr_num: int = 1,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Build a patron document.

        Args:
            attributes: Flat patron attributes (canonical names or aliases)
            mode: 'new' for registration, 'overlay' for updates
            schema: Field descriptors by name (FieldSchema.describe("patron"))
            key: Patron key, required for 'overlay'
            addr_num: Address block to write (1, 2 or 3)
            today: Reference date for age and expiration (defaults to today)

        Returns:
            JSON-serialisable document

        Raises:
            FieldError: Any field-level problem (see errors.py)
            UnknownWireType: A field has no usable remote description
        """
        today = today or date.today()
        check("addrNum", addr_num, ADDRESS_NUMBER_RULE)
        if mode == "overlay":
            check("patronKey", key, PATRON_KEY_RULE)

        table = self.get_field_table(mode)
        patron = self.prepare(attributes, mode, today)

        fields: Dict[str, Any] = {}
        address: List[Dict[str, Any]] = []

        for name, field in table.items():
            value = patron.get(name)
            if is_blank(value) or name == KEY_FIELD:
                continue

            if field.address:
                address.append(self.build_address_entry(name, value, addr_num))
            elif name == PHONE_LIST_FIELD:
                # Registration has no patron key yet; the phone list is
                # applied by a separate update once the record exists.
                if mode == "overlay":
                    fields[name] = [self.build_phone_entry(value, key)]
            else:
                fields[name] = self.build_field(name, value, schema.get(name))

        if address:
            fields[f"address{addr_num}"] = address

        if (
            mode == "new"
            and self.online_expiration_days
            and self.online_profile
            and patron.get(PROFILE_FIELD) == self.online_profile
        ):
            fields["privilegeExpiresDate"] = get_expiration(self.online_expiration_days, today)

        record: Dict[str, Any] = {"resource": PATRON_RESOURCE}
        if mode == "overlay":
            record["key"] = str(key)
        record["fields"] = fields

        logger.debug(
            "Patron record built",
            extra={'mode': mode, 'fields': sorted(fields)}
        )
        return record

    def build_field(self, name: str, value: Any, descriptor: Optional[FieldDescriptor]) -> Any:
        """
        Convert one value to its wire form according to its descriptor.

        Raises:
            UnknownWireType: No descriptor, or a type without a builder
        """
        if descriptor is None:
            raise UnknownWireType(name, None)

        builder = self._wire_builders.get(descriptor.wire_type)
        if builder is None:
            # list fields only exist as address blocks and the phone list
            raise UnknownWireType(name, descriptor.type_name)
        return builder(name, value, descriptor)

    def _build_boolean(self, name: str, value: Any, descriptor: FieldDescriptor) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value).lower()
        if text in ("true", "false"):
            return text
        raise FieldValidationFailed(name, value, "boolean")

    def _build_date(self, name: str, value: Any, descriptor: FieldDescriptor) -> str:
        if isinstance(value, date):
            return value.isoformat()[:10]
        return parse_any_date(str(value), name)

    def _build_resource(self, name: str, value: Any, descriptor: FieldDescriptor) -> Dict[str, Any]:
        if not descriptor.uri:
            raise ConfigurationError(f"Resource field {name!r} has no uri in its description")

        data = None
        if isinstance(value, Mapping):
            data = value.get("data")
            value = value.get("key")
            if is_blank(value):
                raise MissingRequiredField(f"{name}.key")

        resource = {"resource": descriptor.uri, "key": str(value)}
        if not is_blank(data):
            resource["data"] = data
        return resource

    def _build_set(self, name: str, value: Any, descriptor: FieldDescriptor) -> str:
        if not isinstance(value, str) or value not in descriptor.set_members:
            raise InvalidSetMember(name, value, descriptor.set_members)
        return value

    def _build_string(self, name: str, value: Any, descriptor: FieldDescriptor) -> str:
        text = str(value)
        min_length = descriptor.min_length or 0
        max_length = descriptor.max_length
        if len(text) < min_length or (max_length is not None and len(text) > max_length):
            raise InvalidFieldLength(name, len(text), min_length, max_length)
        return text

    def _build_numeric(self, name: str, value: Any, descriptor: FieldDescriptor) -> int:
        if isinstance(value, bool) or not re.fullmatch(r"-?[0-9]+", str(value)):
            raise FieldValidationFailed(name, value, "numeric")
        return int(str(value))

    def build_address_entry(self, code: str, value: Any, addr_num: int) -> Dict[str, Any]:
        """One address line, e.g. code 'ZIP' in block address1."""
        return {
            "resource": f"{PATRON_RESOURCE}/address{addr_num}",
            "fields": {
                "code": {
                    "resource": f"/policy/patronAddress{addr_num}",
                    "key": code,
                },
                "data": value,
            },
        }

    def build_phone_entry(self, phone: Any, patron_key: Any) -> Dict[str, Any]:
        """
        Build the SMS phone entry for a patron.

        Only a single SMS number is supported. The number is reduced to its
        digits and must have ten of them. The country code defaults to US and
        every notification flag defaults to True.

        Raises:
            FieldValidationFailed: Bad patron key, number, country code or flag
        """
        if not isinstance(phone, Mapping):
            raise FieldValidationFailed(PHONE_LIST_FIELD, phone, "mapping")

        check("patronKey", patron_key, PATRON_KEY_RULE)
        telephone = re.sub(r"[^0-9]", "", str(phone.get("number") or ""))
        check("telephone", telephone, TELEPHONE_RULE)

        country_code = phone.get("countryCode")
        if country_code is None:
            country_code = "US"
        check("countryCode", country_code, COUNTRY_CODE_RULE)

        flags = {}
        for flag in PHONE_FLAGS:
            value = phone.get(flag)
            if value is None:
                flags[flag] = True
            else:
                check(flag, value, "o")
                flags[flag] = value == 1 or str(value) == "1"

        return {
            "resource": PHONE_RESOURCE,
            "fields": {
                "patron": {"resource": PATRON_RESOURCE, "key": str(patron_key)},
                "countryCode": {"resource": COUNTRY_CODE_RESOURCE, "key": country_code},
                "number": telephone,
                **flags,
            },
        }

    def build_phone_list_record(self, phone: Any, patron_key: Any) -> Dict[str, Any]:
        """Update document replacing a patron's phone list with one SMS entry."""
        entry = self.build_phone_entry(phone, patron_key)
        return {
            "resource": PATRON_RESOURCE,
            "key": str(patron_key),
            "fields": {PHONE_LIST_FIELD: [entry]},
        }
