"""
Public API for ilsws-client

This is the "front door" - the main entry point for patron operations
against Symphony Web Services.
"""

import copy
import logging
import random
import re
from typing import Any, Dict, List, Mapping, Optional

import requests

from .api_client import ApiClient
from .config_loader import ConfigLoader, FieldConfig
from .date_normalizer import parse_any_date
from .errors import ApiError, MissingRequiredField
from .field_schema import FieldSchema
from .record_builder import PATRON_KEY_RULE, RecordBuilder, is_blank
from .validator import check

logger = logging.getLogger(__name__)

PATRON_ID_RULE = r"r:^[A-Z0-9]{1,20}$"
INDEX_RULE = r"r:^[A-Z0-9a-z_]{2,9}$"
SEARCH_VALUE_RULE = "s:40"
PASSWORD_RULE = "s:20"

# Fields returned by get_patron_attributes
ATTRIBUTE_FIELDS = (
    "lastName",
    "firstName",
    "middleName",
    "barcode",
    "library",
    "profile",
    "language",
    "lastActivityDate",
    "address1",
    "category01",
    "category02",
    "category03",
    "standing",
)

# customInformation codes touched by each update_patron_active_id option
ACTIVE_ID_CODES = {
    "a": ("ACTIVEID",),
    "i": ("INACTVID",),
    "d": ("ACTIVEID", "INACTVID", "PREV_ID", "PREV_ID2", "STUDENT_ID"),
}

# Street words skipped when picking the street name for a temporary barcode
_STREET_SKIP = re.compile(r"N|NW|NE|S|SW|SE|E|W|[0-9]+")


class PatronService:
    """
    Main patron service class.

    Owns one ILSWS session: the HTTP client and its token, the field
    description cache and the record builder.

    Example:
        from ilsws_client import PatronService

        service = PatronService("/etc/ilsws/config.yaml")
        response = service.register_patron({
            "first_name": "Bogus",
            "last_name": "Bogart",
            "birth_date": "1962-03-07",
            ...
        })

        key = service.authenticate_patron_id("21168045918653", "secret")
    """

    def __init__(self, config_path: Optional[str] = None, session: Optional[requests.Session] = None):
        """
        Initialize the service.

        Args:
            config_path: YAML configuration file (defaults to the bundled
                         local-config.yaml)
            session: Optional requests.Session for the HTTP client

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config_loader = ConfigLoader(config_path)
        self._initialize(session)

    @classmethod
    def from_config(cls, config_loader: ConfigLoader, session: Optional[requests.Session] = None) -> "PatronService":
        """Create a service from an existing ConfigLoader."""
        service = cls.__new__(cls)
        service.config_loader = config_loader
        service._initialize(session)
        return service

    def _initialize(self, session: Optional[requests.Session]) -> None:
        """Internal initialization logic (used by __init__ and from_config)."""
        self.api_client = ApiClient(self.config_loader.get_ilsws_config(), session=session)
        self.field_schema = FieldSchema(self.api_client.fetch_field_descriptors)
        self.builder = RecordBuilder.from_config(self.config_loader)
        self._patron_indexes: Optional[List[str]] = None

    def connect(self) -> str:
        """Log in as the configured staff user and return the session token."""
        return self.api_client.connect()

    def _ensure_connected(self) -> None:
        if self.api_client.token is None:
            self.connect()

    def describe_patron(self) -> Dict[str, Any]:
        """Get the raw description of the patron resource."""
        self._ensure_connected()
        return self.api_client.send_get('/user/patron/describe')

    def get_patron_indexes(self) -> List[str]:
        """
        Get the names of the patron search indexes.

        The list is fetched once per service.
        """
        if self._patron_indexes is None:
            describe = self.describe_patron()
            self._patron_indexes = [index['name'] for index in describe.get('searchIndexList', [])]
        return list(self._patron_indexes)

    def _check_index(self, name: str, index: Optional[str]) -> None:
        configured = self.config_loader.get_search_indexes()
        if configured:
            check(name, index, 'v:' + '|'.join(configured))
        elif self.config_loader.get_validate_patron_indexes():
            check(name, index, 'v:' + '|'.join(self.get_patron_indexes()))
        else:
            check(name, index, INDEX_RULE)

    def search_patron(self, index: str, value: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Search patrons by a single index.

        Args:
            index: Search index (e.g. 'ID', 'ALT_ID', 'EMAIL')
            value: Value to search for
            params: Optional ct (count), rw (start row), j (AND|OR) and
                    includeFields. Any q is replaced by index:value.

        Returns:
            Search response with totalResults and result
        """
        check('value', value, SEARCH_VALUE_RULE)
        self._check_index('index', index)
        params = params or {}

        query = {
            'q': f"{index}:{value}",
            'ct': params.get('ct', 1000),
            'rw': params.get('rw', 1),
            'j': params.get('j', 'AND'),
            'includeFields': params.get('includeFields', self.config_loader.get_default_include_fields()),
        }

        self._ensure_connected()
        return self.api_client.send_get('/user/patron/search', query)

    def search_patron_id(self, patron_id: str, count: int = 1000) -> Dict[str, Any]:
        """Search for a patron by ID (barcode)."""
        check('patronId', patron_id, PATRON_ID_RULE)
        check('count', count, 'i:1,1000')
        return self.search_patron('ID', patron_id, {'ct': count})

    def search_patron_alt_id(self, alt_id: str, count: int = 1000) -> Dict[str, Any]:
        """Search for a patron by alternate ID number."""
        check('altId', alt_id, 'i:1,99999999')
        check('count', count, 'i:1,1000')
        return self.search_patron('ALT_ID', str(alt_id), {'ct': count})

    def check_duplicate(self, index1: str, search1: str, index2: str, search2: str) -> bool:
        """
        Look for duplicate accounts by searching two indexes.

        Street searches are stripped of punctuation and date searches are
        normalized to YYYYMMDD before searching. The second search is paged
        through in blocks of 1000 rows.

        Returns:
            True if more than one patron key appears in both result sets

        Example:
            service.check_duplicate("NAME", "Bogart, Bogus", "BIRTHDATE", "1962-03-07")
        """
        check('search1', search1, SEARCH_VALUE_RULE)
        check('search2', search2, SEARCH_VALUE_RULE)
        self._check_index('index1', index1)
        self._check_index('index2', index2)

        search1 = _clean_search(index1, search1, 'search1')
        search2 = _clean_search(index2, search2, 'search2')
        logger.debug("Duplicate check", extra={'index1': index1, 'index2': index2})

        first = self.search_patron(index1, search1, {'rw': 1, 'ct': 1000, 'includeFields': 'key'})
        if (first.get('totalResults') or 0) < 1:
            return False
        keys = {record.get('key') for record in first.get('result') or [] if record}

        matches = 0
        start_row = 1
        while True:
            second = self.search_patron(
                index2, search2, {'rw': start_row, 'ct': 1000, 'includeFields': 'key'}
            )
            for record in second.get('result') or []:
                if record and record.get('key') in keys:
                    matches += 1
            if matches > 1:
                return True

            start_row += 1000
            if start_row > (second.get('totalResults') or 0):
                return False

    def authenticate_patron(self, patron_id: str, password: str) -> Dict[str, Any]:
        """
        Send a patron ID (barcode) and password to the authenticate endpoint.

        Returns:
            Raw response from ILSWS (patronKey, name)

        Raises:
            ApiError: Including HTTP 401 for rejected credentials
        """
        check('patronId', patron_id, PATRON_ID_RULE)
        check('password', password, PASSWORD_RULE)

        self._ensure_connected()
        return self.api_client.send_query(
            '/user/patron/authenticate',
            {'barcode': patron_id, 'password': password},
            'POST',
        )

    def get_patron_attributes(self, patron_key: str) -> Dict[str, Any]:
        """
        Get a flat view of a patron's main attributes.

        Resource fields are reduced to their keys and the address1 block to
        email, city, state, zip and telephone. displayName ("First Last") and
        commonName ("Last, First Middle") are added when the names are
        present. Requested fields missing from the record are ''.

        Returns:
            Attribute dict, empty if ILSWS returned no record
        """
        check('patronKey', patron_key, PATRON_KEY_RULE)
        self._ensure_connected()
        response = self.api_client.send_get(
            f'/user/patron/key/{patron_key}',
            {'includeFields': ','.join(ATTRIBUTE_FIELDS)},
        )
        if 'key' not in response:
            return {}

        fields = response.get('fields') or {}
        attributes: Dict[str, Any] = {}
        for name in ATTRIBUTE_FIELDS:
            value = fields.get(name)
            if name == 'address1':
                attributes.update(_address_attributes(value or []))
            elif isinstance(value, Mapping) and 'key' in value:
                attributes[name] = value['key']
            elif value is not None:
                attributes[name] = value
            else:
                attributes[name] = ''

        first, last, middle = fields.get('firstName'), fields.get('lastName'), fields.get('middleName')
        if first and last:
            attributes['displayName'] = f"{first} {last}"
            attributes['commonName'] = f"{last}, {first} {middle}" if middle else f"{last}, {first}"

        return attributes

    def authenticate_patron_id(self, patron_id: str, password: str) -> str:
        """
        Authenticate a patron by ID (barcode) and password.

        Returns:
            The patron key, or '0' if the ID or password is wrong

        Raises:
            FieldValidationFailed: If the ID or password is malformed
            ApiError: For failures other than rejected credentials
        """
        try:
            response = self.authenticate_patron(patron_id, password)
        except ApiError as e:
            if e.status_code == 401:
                logger.info("Patron authentication rejected")
                return '0'
            raise

        return str(response.get('patronKey') or '0')

    def search_authenticate(self, index: str, value: str, password: str) -> str:
        """
        Find a patron by some other value (email, telephone, ...) and
        authenticate with the barcode found.

        ILSWS counts deleted records in totalResults but returns them as
        nulls, so every result slot is checked.

        Returns:
            The patron key when exactly one matching patron authenticates,
            otherwise '0'
        """
        check('search', value, SEARCH_VALUE_RULE)
        check('password', password, PASSWORD_RULE)

        max_count = self.config_loader.get_ilsws_config().get('max_search_count', 20)
        response = self.search_patron(index, value, {
            'rw': 1,
            'ct': max_count,
            'j': 'AND',
            'includeFields': 'barcode',
        })

        total = response.get('totalResults', 0) or 0
        if total < 1 or total > max_count:
            return '0'

        patron_key = '0'
        matches = 0
        for record in response.get('result') or []:
            barcode = ((record or {}).get('fields') or {}).get('barcode')
            if not barcode:
                continue
            key = self.authenticate_patron_id(str(barcode), password)
            if key != '0':
                patron_key = key
                matches += 1
            if matches > 1:
                return '0'

        return patron_key

    def build_record(
        self,
        attributes: Mapping[str, Any],
        mode: str,
        key: Optional[str] = None,
        addr_num: int = 1,
    ) -> Dict[str, Any]:
        """
        Build a patron document without sending it.

        Fetches the patron field descriptions on first use.
        """
        self._ensure_connected()
        schema = self.field_schema.describe('patron')
        return self.builder.build(attributes, mode, schema, key=key, addr_num=addr_num)

    def register_patron(
        self,
        patron: Mapping[str, Any],
        addr_num: int = 1,
        role: str = 'PATRON',
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Register a new patron.

        A temporary barcode is generated when none is supplied. After the
        record is created, a barcode that is not a real 14-digit barcode is
        replaced by the new patron key, and any SMS phone list is applied.

        Args:
            patron: Flat patron attributes (canonical names or aliases)
            addr_num: Address block to write (1, 2 or 3)
            role: SD-Preferred-Role header value
            client_id: Optional x-sirs-clientID override

        Returns:
            Response from ILSWS for the registration

        Raises:
            FieldError: If the patron data is invalid
            ApiError: If any request fails
        """
        check('role', role, 'v:STAFF|PATRON|GUEST')
        table = self.config_loader.get_field_table('new')
        patron = dict(patron)

        barcode = _lookup(patron, 'barcode', table)
        if is_blank(barcode):
            barcode = gen_temp_barcode(
                str(_lookup(patron, 'lastName', table) or ''),
                str(_lookup(patron, 'firstName', table) or ''),
                str(_lookup(patron, 'STREET', table) or ''),
            )
            patron['barcode'] = barcode

        record = self.build_record(patron, 'new', addr_num=addr_num)
        response = self.api_client.send_query('/user/patron', record, 'POST', role, client_id)

        patron_key = response.get('key')
        if not patron_key:
            return response

        logger.info("Patron registered", extra={'patron_key': patron_key})

        if not re.fullmatch(r"[0-9]{14}", str(barcode)):
            if not self.change_barcode(str(patron_key), str(patron_key), role, client_id):
                raise ApiError("Unable to set barcode to patron key")

        phone = _lookup(patron, 'phoneList', table)
        if not is_blank(phone):
            if not self.update_phone_list(phone, str(patron_key), role, client_id):
                raise ApiError("SMS phone list update failed")

        return response

    def update_patron(self, patron: Mapping[str, Any], patron_key: str, addr_num: int = 1) -> Dict[str, Any]:
        """
        Update an existing patron record using the overlay field table.

        Returns:
            Response from ILSWS
        """
        check('patronKey', patron_key, PATRON_KEY_RULE)
        record = self.build_record(patron, 'overlay', key=patron_key, addr_num=addr_num)
        response = self.api_client.send_query(f'/user/patron/key/{patron_key}', record, 'PUT')

        logger.info("Patron updated", extra={'patron_key': patron_key})
        return response

    def update_phone_list(
        self,
        phone: Mapping[str, Any],
        patron_key: str,
        role: str = 'PATRON',
        client_id: Optional[str] = None,
    ) -> bool:
        """
        Replace a patron's SMS phone list with a single number.

        Args:
            phone: number plus optional countryCode and bills, general,
                   holds, manual, overdues flags

        Returns:
            True if ILSWS echoed the patron key back
        """
        record = self.builder.build_phone_list_record(phone, patron_key)
        self._ensure_connected()
        response = self.api_client.send_query(f'/user/patron/key/{patron_key}', record, 'PUT', role, client_id)
        return str(response.get('key')) == str(patron_key)

    def change_barcode(
        self,
        patron_key: str,
        patron_id: str,
        role: str = 'PATRON',
        client_id: Optional[str] = None,
    ) -> bool:
        """
        Change a patron's barcode.

        Returns:
            True if the response carries the new barcode
        """
        check('patronKey', patron_key, PATRON_KEY_RULE)
        check('patronId', patron_id, PATRON_ID_RULE)

        record = {
            'resource': '/user/patron',
            'key': str(patron_key),
            'fields': {'barcode': patron_id},
        }
        self._ensure_connected()
        response = self.api_client.send_query(f'/user/patron/key/{patron_key}', record, 'PUT', role, client_id)
        return (response.get('fields') or {}).get('barcode') == patron_id

    def delete_patron(self, patron_key: str) -> bool:
        """Delete a patron. Returns True when ILSWS answers 204."""
        check('patronKey', patron_key, PATRON_KEY_RULE)
        self._ensure_connected()
        self.api_client.send_query(f'/user/patron/key/{patron_key}', None, 'DELETE')
        return self.api_client.last_status == 204

    def reset_patron_password(self, patron_id: str, url: str, email: Optional[str] = None) -> Dict[str, Any]:
        """
        Ask ILSWS to send a password reset link.

        Args:
            patron_id: Patron barcode
            url: Call-back URL of the web application handling the reset
            email: Optional email address to send the link to
        """
        check('patronId', patron_id, PATRON_ID_RULE)
        check('url', url, 'u')

        data = {'barcode': patron_id, 'resetPasswordUrl': url}
        if email:
            check('email', email, 'e')
            data['email'] = email

        self._ensure_connected()
        return self.api_client.send_query('/user/patron/resetMyPassword', data, 'POST')

    def change_patron_password(
        self,
        data: Mapping[str, Any],
        role: str = 'PATRON',
        client_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Change a patron's password.

        Args:
            data: newPassword plus either currentPassword or
                  resetPasswordToken (from a reset link)

        Returns:
            Response from ILSWS

        Raises:
            MissingRequiredField: If newPassword, or both of the others, are missing
        """
        if is_blank(data.get('newPassword')):
            raise MissingRequiredField('newPassword')
        if is_blank(data.get('currentPassword')) and is_blank(data.get('resetPasswordToken')):
            raise MissingRequiredField('currentPassword')

        self._ensure_connected()
        return self.api_client.send_query(
            '/user/patron/changeMyPassword', dict(data), 'POST', role, client_id
        )

    def update_patron_activity(self, patron_id: str) -> Dict[str, Any]:
        """Set a patron's lastActivityDate to today."""
        check('patronId', patron_id, PATRON_ID_RULE)
        self._ensure_connected()
        return self.api_client.send_query(
            '/user/patron/updateActivityDate', {'patronBarcode': patron_id}, 'POST'
        )

    def update_patron_active_id(self, patron_key: str, patron_id: str, option: str) -> bool:
        """
        Add or remove a barcode in the patron's ID lists (customInformation).

        Args:
            patron_key: Patron to modify
            patron_id: Barcode to add or remove
            option: 'a' adds to ACTIVEID, 'i' adds to INACTVID, 'd' removes the
                    barcode from ACTIVEID, INACTVID, PREV_ID, PREV_ID2 and
                    STUDENT_ID

        Returns:
            True if the updated record was accepted

        Note:
            Only lists already present on the record are changed. The codes
            must exist in the Symphony configuration.
        """
        check('patronKey', patron_key, PATRON_KEY_RULE)
        check('patronId', patron_id, PATRON_ID_RULE)
        check('option', option, 'v:a|i|d')

        self._ensure_connected()
        current = self.api_client.send_get(
            f'/user/patron/key/{patron_key}', {'includeFields': 'customInformation{*}'}
        )
        if not current:
            return False

        custom = copy.deepcopy((current.get('fields') or {}).get('customInformation') or [])
        for entry in custom:
            entry_fields = entry.get('fields') or {}
            code = (entry_fields.get('code') or {}).get('key')
            if code not in ACTIVE_ID_CODES[option]:
                continue

            ids = [i for i in str(entry_fields.get('data') or '').split(',') if i]
            if option == 'd':
                ids = [i for i in ids if i != patron_id]
            else:
                ids.append(patron_id)
            entry_fields['data'] = ','.join(ids)

        record = {
            'resource': '/user/patron',
            'key': str(patron_key),
            'fields': {'customInformation': custom},
        }
        response = self.api_client.send_query(f'/user/patron/key/{patron_key}', record, 'PUT')

        logger.info("Patron ID lists updated", extra={'patron_key': patron_key, 'option': option})
        return bool(response)

    def reload_schema(self) -> None:
        """Drop cached field descriptions so the next build fetches them again."""
        self.field_schema.clear()
        self._patron_indexes = None

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.api_client.close()


def _lookup(patron: Mapping[str, Any], name: str, table: Mapping[str, FieldConfig]) -> Any:
    """Value of a field by canonical name, falling back to its alias."""
    value = patron.get(name)
    field = table.get(name)
    if is_blank(value) and field is not None and field.alias:
        value = patron.get(field.alias)
    return value


def gen_temp_barcode(last_name: str, first_name: str, street: str) -> str:
    """
    Make a temporary barcode for a new registration.

    First four letters of the last name, two of the first name, four of the
    street name (skipping house numbers and directionals) and a random number.
    """
    street_name = ''
    for word in street.split():
        if not _STREET_SKIP.fullmatch(word):
            street_name = word
            break

    parts = (last_name[:4], first_name[:2], street_name[:4])
    barcode = ''.join(re.sub(r'[^A-Za-z0-9]', '', part) for part in parts)
    return f"{barcode.upper()}{random.randint(1, 99999)}"


def _clean_search(index: str, value: str, field: str) -> str:
    """Prepare a duplicate-check search value for its index."""
    if re.search('street', index, re.IGNORECASE):
        value = re.sub(r'[^A-Za-z0-9\- ]', '', value)
    if re.search('date', index, re.IGNORECASE):
        value = parse_any_date(value, field).replace('-', '')
    return value


def _address_attributes(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Flatten address1 entries into email, city, state, zip and telephone."""
    attributes = {}
    for entry in entries:
        entry_fields = (entry or {}).get('fields') or {}
        code = (entry_fields.get('code') or {}).get('key')
        data = entry_fields.get('data')
        if code == 'EMAIL':
            attributes['email'] = data
        elif code == 'CITY/STATE':
            parts = re.split(r',\s*', data or '', maxsplit=1)
            attributes['city'] = parts[0]
            attributes['state'] = parts[1] if len(parts) > 1 else ''
        elif code == 'ZIP':
            attributes['zip'] = data
        elif code == 'PHONE':
            attributes['telephone'] = data
    return attributes
