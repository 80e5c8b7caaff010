"""
Tests for PatronService and ApiClient

ILSWS is replaced by FakeSession, which answers requests from a table of
canned responses keyed by method and path.
"""
import json

import pytest

from ilsws_client import PatronService
from ilsws_client.api import gen_temp_barcode
from ilsws_client.api_client import ApiClient
from ilsws_client.errors import (
    ApiError,
    FieldValidationFailed,
    InvalidDateFormat,
    MissingRequiredField,
)


BASE = "https://ilsws.example.org:443/ilsws"
TOKEN = "0123abcd-0123-4567-89ab-0123456789ab"

PATRON_DESCRIBE = {
    "fields": [
        {"name": "firstName", "type": "string", "min": 1, "max": 20},
        {"name": "middleName", "type": "string", "min": 1, "max": 20},
        {"name": "lastName", "type": "string", "min": 1, "max": 60},
        {"name": "birthDate", "type": "date"},
        {"name": "barcode", "type": "string", "min": 1, "max": 20},
        {"name": "pin", "type": "string", "min": 4, "max": 25},
        {"name": "profile", "type": "resource", "uri": "/policy/userProfile"},
        {"name": "library", "type": "resource", "uri": "/policy/library"},
        {"name": "language", "type": "resource", "uri": "/policy/language"},
        {"name": "category01", "type": "resource", "uri": "/policy/patronCategory01"},
        {"name": "address1", "type": "list"},
        {"name": "phoneList", "type": "list"},
    ],
    "searchIndexList": [{"name": "ID"}, {"name": "EMAIL"}],
}


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.text = json.dumps(body) if body is not None else ""
        self.content = self.text.encode()
        self.reason = "Error" if status_code >= 400 else "OK"

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Stands in for requests.Session and records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.closed = False
        self.add("POST", "/user/staff/login", body={"sessionToken": TOKEN})
        self.add("GET", "/user/patron/describe", body=PATRON_DESCRIBE)

    def add(self, method, path, status_code=200, body=None):
        """Queue a response; the last queued response for a route repeats."""
        self.routes.setdefault((method, path), []).append(FakeResponse(status_code, body))

    def _respond(self, method, url, **kwargs):
        path = url[len(BASE):]
        self.requests.append({"method": method, "path": path, **kwargs})
        queue = self.routes.get((method, path))
        if not queue:
            return FakeResponse(404, {"messageList": [{"message": "not found"}]})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def get(self, url, params=None, headers=None, timeout=None):
        return self._respond("GET", url, params=params, headers=headers)

    def post(self, url, data=None, headers=None, timeout=None):
        return self._respond("POST", url, data=data, headers=headers)

    def request(self, method, url, data=None, headers=None, timeout=None):
        return self._respond(method, url, data=data, headers=headers)

    def close(self):
        self.closed = True

    def sent(self, method, path):
        return [r for r in self.requests if r["method"] == method and r["path"] == path]


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def service(session):
    """PatronService on the bundled config talking to FakeSession."""
    return PatronService(session=session)


@pytest.fixture
def new_patron():
    return {
        "first_name": "Bogus",
        "last_name": "Bogart",
        "birth_date": "1962-03-07",
        "password": "secret1",
        "street": "123 NW Main St",
        "city_state": "Portland, OR",
        "postal_code": "97209",
        "email": "bogus@example.org",
    }


class TestApiClient:
    """Test the HTTP transport."""

    def test_base_url(self, session):
        """Test URL construction from the ilsws block."""
        client = ApiClient({"hostname": "ilsws.example.org", "port": 443, "webapp": "ilsws"}, session)
        assert client.base_url == BASE

    def test_connect(self, service, session):
        """Test staff login."""
        assert service.connect() == TOKEN
        login = session.sent("POST", "/user/staff/login")[0]
        assert json.loads(login["data"]) == {"login": "ilsws_staff", "password": "changeme"}
        assert "x-sirs-sessionToken" not in login["headers"]

    def test_connect_without_token(self, session):
        """Test that a login response without a token is an error."""
        session.routes[("POST", "/user/staff/login")] = [FakeResponse(200, {})]
        client = ApiClient({"hostname": "ilsws.example.org", "webapp": "ilsws"}, session)
        with pytest.raises(ApiError):
            client.connect()

    def test_login_rejected(self, session):
        """Test that a failed login raises ApiError with the status."""
        session.routes[("POST", "/user/staff/login")] = [FakeResponse(401, {"messageList": []})]
        client = ApiClient({"hostname": "ilsws.example.org", "webapp": "ilsws"}, session)
        with pytest.raises(ApiError) as exc:
            client.connect()
        assert exc.value.status_code == 401
        assert client.token is None

    def test_get_requires_token(self, session):
        """Test that requests before login are refused."""
        client = ApiClient({"hostname": "ilsws.example.org", "webapp": "ilsws"}, session)
        with pytest.raises(FieldValidationFailed):
            client.send_get("/user/patron/describe")
        assert session.requests == []

    def test_headers(self, service, session):
        """Test the headers sent with an authenticated request."""
        service.describe_patron()
        headers = session.sent("GET", "/user/patron/describe")[0]["headers"]
        assert headers["x-sirs-sessionToken"] == TOKEN
        assert headers["x-sirs-clientID"] == "DS_CLIENT"
        assert headers["SD-Originating-App-ID"] == "ilsws-client"
        assert headers["SD-Request-Tracker"].isdigit()

    def test_get_drops_empty_params(self, service, session):
        """Test that empty query parameters are not sent."""
        session.add("GET", "/user/patron/search", body={"totalResults": 0})
        service.connect()
        service.api_client.send_get("/user/patron/search", {"q": "ID:1", "includeFields": ""})
        assert session.requests[-1]["params"] == {"q": "ID:1"}

    def test_query_checks_method_and_role(self, service):
        """Test send_query argument checks."""
        service.connect()
        with pytest.raises(FieldValidationFailed):
            service.api_client.send_query("/user/patron", {}, "PATCH")
        with pytest.raises(FieldValidationFailed):
            service.api_client.send_query("/user/patron", {}, "POST", role="ADMIN")
        with pytest.raises(FieldValidationFailed):
            service.api_client.send_query("/user/patron", {}, "POST", client_id="x")

    def test_error_status(self, service, session):
        """Test that server errors raise ApiError."""
        session.add("GET", "/user/patron/key/1", 500, {"messageList": [{"message": "boom"}]})
        service.connect()
        with pytest.raises(ApiError) as exc:
            service.api_client.send_get("/user/patron/key/1")
        assert exc.value.status_code == 500
        assert exc.value.url == BASE + "/user/patron/key/1"

    def test_close(self, service, session):
        """Test that close() closes the session."""
        service.close()
        assert session.closed


class TestSearchAndAuthenticate:
    """Test patron search and authentication."""

    def test_search_patron(self, service, session):
        """Test search query parameters."""
        session.add("GET", "/user/patron/search", body={"totalResults": 0, "result": []})
        service.search_patron("EMAIL", "bogus@example.org", {"ct": 10})

        params = session.sent("GET", "/user/patron/search")[0]["params"]
        assert params["q"] == "EMAIL:bogus@example.org"
        assert params["ct"] == 10
        assert params["rw"] == 1
        assert params["j"] == "AND"
        assert params["includeFields"] == "firstName,lastName,barcode"

    def test_search_bad_index(self, service):
        """Test that malformed index names are refused."""
        with pytest.raises(FieldValidationFailed):
            service.search_patron("X", "value")

    def test_search_value_too_long(self, service):
        """Test the search value length limit."""
        with pytest.raises(FieldValidationFailed):
            service.search_patron("EMAIL", "x" * 41)

    def test_search_index_checked_remotely(self, service, session):
        """Test index validation against the server's index list."""
        service.config_loader.config["symphony"]["validate_patron_indexes"] = True
        session.add("GET", "/user/patron/search", body={"totalResults": 0})

        service.search_patron("EMAIL", "bogus@example.org")
        with pytest.raises(FieldValidationFailed):
            service.search_patron("PHONE", "2155346821")
        assert service.get_patron_indexes() == ["ID", "EMAIL"]

    def test_search_patron_id(self, service, session):
        """Test search by barcode."""
        session.add("GET", "/user/patron/search", body={"totalResults": 1})
        service.search_patron_id("21168045918653", 5)
        params = session.sent("GET", "/user/patron/search")[0]["params"]
        assert params["q"] == "ID:21168045918653"
        assert params["ct"] == 5

    def test_authenticate(self, service, session):
        """Test a successful authentication."""
        session.add("POST", "/user/patron/authenticate", body={"patronKey": "123456"})
        assert service.authenticate_patron_id("21168045918653", "secret1") == "123456"

        request = session.sent("POST", "/user/patron/authenticate")[0]
        assert json.loads(request["data"]) == {"barcode": "21168045918653", "password": "secret1"}
        assert request["headers"]["SD-Preferred-Role"] == "PATRON"

    def test_authenticate_rejected(self, service, session):
        """Test that rejected credentials return '0'."""
        session.add("POST", "/user/patron/authenticate", 401, {"messageList": []})
        assert service.authenticate_patron_id("21168045918653", "wrong") == "0"

    def test_authenticate_server_error(self, service, session):
        """Test that other failures propagate."""
        session.add("POST", "/user/patron/authenticate", 500, {"messageList": []})
        with pytest.raises(ApiError):
            service.authenticate_patron_id("21168045918653", "secret1")

    def test_search_authenticate(self, service, session):
        """Test search then authenticate, skipping deleted records."""
        session.add("GET", "/user/patron/search", body={
            "totalResults": 3,
            "result": [
                None,
                {"fields": {"barcode": "1111"}},
                {"fields": {"barcode": "2222"}},
            ],
        })
        session.add("POST", "/user/patron/authenticate", 401, {"messageList": []})
        session.add("POST", "/user/patron/authenticate", body={"patronKey": "222"})

        assert service.search_authenticate("EMAIL", "bogus@example.org", "secret1") == "222"
        sent = [json.loads(r["data"])["barcode"] for r in session.sent("POST", "/user/patron/authenticate")]
        assert sent == ["1111", "2222"]

    def test_search_authenticate_ambiguous(self, service, session):
        """Test that two authenticating matches return '0'."""
        session.add("GET", "/user/patron/search", body={
            "totalResults": 2,
            "result": [{"fields": {"barcode": "1111"}}, {"fields": {"barcode": "2222"}}],
        })
        session.add("POST", "/user/patron/authenticate", body={"patronKey": "111"})
        assert service.search_authenticate("EMAIL", "bogus@example.org", "secret1") == "0"

    def test_search_authenticate_no_results(self, service, session):
        """Test that an empty search returns '0'."""
        session.add("GET", "/user/patron/search", body={"totalResults": 0})
        assert service.search_authenticate("EMAIL", "bogus@example.org", "secret1") == "0"
        assert session.sent("POST", "/user/patron/authenticate") == []


class TestRegisterPatron:
    """Test register_patron()."""

    def test_register(self, service, session, new_patron):
        """Test a registration with a temporary barcode."""
        session.add("POST", "/user/patron", body={"key": "123456"})
        session.add("PUT", "/user/patron/key/123456", body={"key": "123456", "fields": {"barcode": "123456"}})

        response = service.register_patron(new_patron)
        assert response == {"key": "123456"}

        record = json.loads(session.sent("POST", "/user/patron")[0]["data"])
        fields = record["fields"]
        assert record["resource"] == "/user/patron"
        assert fields["lastName"] == "Bogart"
        assert fields["birthDate"] == "1962-03-07"
        assert fields["profile"] == {"resource": "/policy/userProfile", "key": "0_MULT"}
        assert fields["library"]["key"] == "CEN"
        assert fields["language"]["key"] == "ENGLISH"
        assert fields["barcode"].startswith("BOGABOMAIN")
        codes = [entry["fields"]["code"]["key"] for entry in fields["address1"]]
        assert codes == ["STREET", "CITY/STATE", "ZIP", "EMAIL"]

        update = json.loads(session.sent("PUT", "/user/patron/key/123456")[0]["data"])
        assert update["fields"] == {"barcode": "123456"}

    def test_register_with_barcode(self, service, session, new_patron):
        """Test that a real 14-digit barcode is kept."""
        new_patron["patron_id"] = "21168045918653"
        session.add("POST", "/user/patron", body={"key": "123456"})

        service.register_patron(new_patron)
        assert session.sent("PUT", "/user/patron/key/123456") == []

    def test_register_with_phone(self, service, session, new_patron):
        """Test that the SMS phone list is applied after registration."""
        new_patron["patron_id"] = "21168045918653"
        new_patron["sms_phone"] = {"number": "215-534-6821"}
        session.add("POST", "/user/patron", body={"key": "123456"})
        session.add("PUT", "/user/patron/key/123456", body={"key": "123456"})

        service.register_patron(new_patron)

        record = json.loads(session.sent("POST", "/user/patron")[0]["data"])
        assert "phoneList" not in record["fields"]
        update = json.loads(session.sent("PUT", "/user/patron/key/123456")[0]["data"])
        phone = update["fields"]["phoneList"][0]["fields"]
        assert phone["number"] == "2155346821"
        assert phone["countryCode"]["key"] == "US"

    def test_register_invalid_patron(self, service, session, new_patron):
        """Test that bad data is rejected before anything is posted."""
        del new_patron["postal_code"]
        with pytest.raises(MissingRequiredField):
            service.register_patron(new_patron)
        assert session.sent("POST", "/user/patron") == []

    def test_register_online_profile(self, service, session, new_patron):
        """Test that online registrations expire."""
        new_patron["patron_id"] = "21168045918653"
        new_patron["user_profile"] = "ONLINE"
        session.add("POST", "/user/patron", body={"key": "123456"})

        service.register_patron(new_patron)
        record = json.loads(session.sent("POST", "/user/patron")[0]["data"])
        assert "privilegeExpiresDate" in record["fields"]


class TestUpdatePatron:
    """Test updates, barcode changes, deletes and password resets."""

    def test_update(self, service, session):
        """Test an overlay update."""
        session.add("PUT", "/user/patron/key/123456", body={"key": "123456"})
        service.update_patron({"email": "new@example.org"}, "123456", addr_num=2)

        request = session.sent("PUT", "/user/patron/key/123456")[0]
        record = json.loads(request["data"])
        assert record["key"] == "123456"
        assert record["fields"]["address2"][0]["fields"]["data"] == "new@example.org"
        assert request["headers"]["SD-Prompt-Return"] == "USER_PRIVILEGE_OVRCD/OVERRIDE"

    def test_update_bad_key(self, service):
        """Test that patron keys are checked."""
        with pytest.raises(FieldValidationFailed):
            service.update_patron({"first_name": "Bogus"}, "abc")

    def test_change_barcode(self, service, session):
        """Test barcode changes."""
        session.add("PUT", "/user/patron/key/123456", body={"fields": {"barcode": "21168045918653"}})
        assert service.change_barcode("123456", "21168045918653")

    def test_update_phone_list(self, service, session):
        """Test a standalone phone list update."""
        session.add("PUT", "/user/patron/key/123456", body={"key": "123456"})
        assert service.update_phone_list({"number": "2155346821", "bills": 0}, "123456")
        record = json.loads(session.sent("PUT", "/user/patron/key/123456")[0]["data"])
        assert record["fields"]["phoneList"][0]["fields"]["bills"] is False

    def test_delete(self, service, session):
        """Test that a 204 answer means deleted."""
        session.add("DELETE", "/user/patron/key/123456", 204)
        assert service.delete_patron("123456") is True

    def test_reset_password(self, service, session):
        """Test the password reset request."""
        session.add("POST", "/user/patron/resetMyPassword", body={})
        service.reset_patron_password("21168045918653", "https://example.org/reset", "bogus@example.org")
        data = json.loads(session.sent("POST", "/user/patron/resetMyPassword")[0]["data"])
        assert data == {
            "barcode": "21168045918653",
            "resetPasswordUrl": "https://example.org/reset",
            "email": "bogus@example.org",
        }

    def test_reset_password_bad_url(self, service):
        """Test that the call-back URL is checked."""
        with pytest.raises(FieldValidationFailed):
            service.reset_patron_password("21168045918653", "not a url")


class TestSchemaCache:
    """Test field description caching through the service."""

    def test_describe_fetched_once(self, service, session):
        """Test that builds share one describe call."""
        service.build_record({"first_name": "Bogus"}, "overlay", key="123456")
        service.build_record({"last_name": "Bogart"}, "overlay", key="123456")
        assert len(session.sent("GET", "/user/patron/describe")) == 1

    def test_reload_schema(self, service, session):
        """Test that reload_schema() forces a new describe call."""
        service.build_record({"first_name": "Bogus"}, "overlay", key="123456")
        service.reload_schema()
        service.build_record({"first_name": "Bogus"}, "overlay", key="123456")
        assert len(session.sent("GET", "/user/patron/describe")) == 2


class TestTempBarcode:
    """Test gen_temp_barcode()."""

    def test_shape(self, monkeypatch):
        """Test name parts and the random suffix."""
        monkeypatch.setattr("ilsws_client.api.random.randint", lambda a, b: 42)
        assert gen_temp_barcode("Bogart", "Bogus", "123 NW Main St") == "BOGABOMAIN42"

    def test_strips_punctuation(self, monkeypatch):
        """Test that non-alphanumeric characters are removed."""
        monkeypatch.setattr("ilsws_client.api.random.randint", lambda a, b: 7)
        assert gen_temp_barcode("O'Neil", "Jo", "5 St. Paul") == "ONEJOST7"


class TestPatronLookups:
    """Test alternate-ID search, raw authentication and patron attributes."""

    def test_search_alt_id(self, service, session):
        """Test search by alternate ID."""
        session.add("GET", "/user/patron/search", body={"totalResults": 1})
        service.search_patron_alt_id("12345", 10)
        params = session.sent("GET", "/user/patron/search")[0]["params"]
        assert params["q"] == "ALT_ID:12345"
        assert params["ct"] == 10

    @pytest.mark.parametrize("alt_id", ["abc", "0", "１２３"])
    def test_search_alt_id_invalid(self, service, alt_id):
        """Test that alternate IDs are positive ASCII integers."""
        with pytest.raises(FieldValidationFailed):
            service.search_patron_alt_id(alt_id)

    def test_authenticate_patron_raw(self, service, session):
        """Test that authenticate_patron returns the whole response."""
        session.add("POST", "/user/patron/authenticate", body={"patronKey": "123456", "name": "Bogart, Bogus"})
        assert service.authenticate_patron("21168045918653", "secret1") == {
            "patronKey": "123456",
            "name": "Bogart, Bogus",
        }

    def test_authenticate_patron_raw_rejected(self, service, session):
        """Test that authenticate_patron lets a 401 through as ApiError."""
        session.add("POST", "/user/patron/authenticate", 401, {"messageList": []})
        with pytest.raises(ApiError) as exc:
            service.authenticate_patron("21168045918653", "wrong")
        assert exc.value.status_code == 401

    def test_patron_attributes(self, service, session):
        """Test the flattened attribute view."""
        session.add("GET", "/user/patron/key/123456", body={
            "key": "123456",
            "fields": {
                "firstName": "Bogus",
                "lastName": "Bogart",
                "barcode": "21168045918653",
                "library": {"resource": "/policy/library", "key": "CEN"},
                "profile": {"resource": "/policy/userProfile", "key": "0_MULT"},
                "address1": [
                    {"fields": {"code": {"key": "EMAIL"}, "data": "bogus@example.org"}},
                    {"fields": {"code": {"key": "CITY/STATE"}, "data": "Portland, OR"}},
                    {"fields": {"code": {"key": "ZIP"}, "data": "97209"}},
                    {"fields": {"code": {"key": "PHONE"}, "data": "215-534-6821"}},
                ],
            },
        })

        attributes = service.get_patron_attributes("123456")

        assert attributes["library"] == "CEN"
        assert attributes["profile"] == "0_MULT"
        assert attributes["barcode"] == "21168045918653"
        assert attributes["middleName"] == ""
        assert attributes["email"] == "bogus@example.org"
        assert attributes["city"] == "Portland"
        assert attributes["state"] == "OR"
        assert attributes["zip"] == "97209"
        assert attributes["telephone"] == "215-534-6821"
        assert attributes["displayName"] == "Bogus Bogart"
        assert attributes["commonName"] == "Bogart, Bogus"

        params = session.sent("GET", "/user/patron/key/123456")[0]["params"]
        assert "address1" in params["includeFields"].split(",")

    def test_patron_attributes_middle_name(self, service, session):
        """Test commonName with a middle name."""
        session.add("GET", "/user/patron/key/123456", body={
            "key": "123456",
            "fields": {"firstName": "Bogus", "lastName": "Bogart", "middleName": "Q"},
        })
        assert service.get_patron_attributes("123456")["commonName"] == "Bogart, Bogus Q"

    def test_patron_attributes_no_record(self, service, session):
        """Test that a response without a key gives no attributes."""
        session.add("GET", "/user/patron/key/123456", body={})
        assert service.get_patron_attributes("123456") == {}


def search_page(total, keys):
    return {"totalResults": total, "result": [{"key": k} if k else None for k in keys]}


class TestCheckDuplicate:
    """Test check_duplicate()."""

    def test_duplicate_found(self, service, session):
        """Test that two shared keys mean a duplicate."""
        session.add("GET", "/user/patron/search", body=search_page(3, ["1", "2", "3"]))
        session.add("GET", "/user/patron/search", body=search_page(3, ["2", None, "3"]))

        assert service.check_duplicate("NAME", "Bogart, Bogus", "BIRTHDATE", "1962-03-07") is True

        queries = [r["params"]["q"] for r in session.sent("GET", "/user/patron/search")]
        assert queries == ["NAME:Bogart, Bogus", "BIRTHDATE:19620307"]
        assert all(r["params"]["includeFields"] == "key" for r in session.sent("GET", "/user/patron/search"))

    def test_single_match_is_not_duplicate(self, service, session):
        """Test that one shared key is the patron themselves."""
        session.add("GET", "/user/patron/search", body=search_page(2, ["1", "2"]))
        session.add("GET", "/user/patron/search", body=search_page(2, ["2", "7"]))
        assert service.check_duplicate("NAME", "Bogart, Bogus", "BIRTHDATE", "19620307") is False

    def test_first_search_empty(self, service, session):
        """Test that no first-index hits ends the check."""
        session.add("GET", "/user/patron/search", body=search_page(0, []))
        assert service.check_duplicate("NAME", "Nobody", "BIRTHDATE", "1962-03-07") is False
        assert len(session.sent("GET", "/user/patron/search")) == 1

    def test_second_search_paged(self, service, session):
        """Test that later pages of the second search are read."""
        session.add("GET", "/user/patron/search", body=search_page(2, ["1", "2"]))
        session.add("GET", "/user/patron/search", body=search_page(1500, ["1", "8"]))
        session.add("GET", "/user/patron/search", body=search_page(1500, ["9", "2"]))

        assert service.check_duplicate("NAME", "Bogart, Bogus", "ZIP", "97209") is True
        rows = [r["params"]["rw"] for r in session.sent("GET", "/user/patron/search")]
        assert rows == [1, 1, 1001]

    def test_street_search_cleaned(self, service, session):
        """Test that punctuation is removed from street searches."""
        session.add("GET", "/user/patron/search", body=search_page(0, []))
        service.check_duplicate("STREET", "123 N.W. Main St.", "NAME", "Bogart")
        assert session.sent("GET", "/user/patron/search")[0]["params"]["q"] == "STREET:123 NW Main St"

    def test_bad_date(self, service):
        """Test that an unreadable date search is rejected."""
        with pytest.raises(InvalidDateFormat):
            service.check_duplicate("NAME", "Bogart", "BIRTHDATE", "1962-13-07")


class TestPatronMaintenance:
    """Test password change, activity date and ID list updates."""

    def test_change_password(self, service, session):
        """Test a password change with the current password."""
        session.add("POST", "/user/patron/changeMyPassword", body={"patronKey": "123456"})
        data = {"currentPassword": "secret1", "newPassword": "secret2"}
        assert service.change_patron_password(data) == {"patronKey": "123456"}

        request = session.sent("POST", "/user/patron/changeMyPassword")[0]
        assert json.loads(request["data"]) == data
        assert request["headers"]["SD-Preferred-Role"] == "PATRON"

    def test_change_password_with_reset_token(self, service, session):
        """Test a password change from a reset link."""
        session.add("POST", "/user/patron/changeMyPassword", body={})
        service.change_patron_password({"resetPasswordToken": "abc", "newPassword": "secret2"})
        assert len(session.sent("POST", "/user/patron/changeMyPassword")) == 1

    @pytest.mark.parametrize("data", [
        {"currentPassword": "secret1"},
        {"newPassword": "secret2"},
        {"currentPassword": "", "newPassword": "secret2"},
    ])
    def test_change_password_incomplete(self, service, session, data):
        """Test that incomplete requests are refused before sending."""
        with pytest.raises(MissingRequiredField):
            service.change_patron_password(data)
        assert session.sent("POST", "/user/patron/changeMyPassword") == []

    def test_update_activity(self, service, session):
        """Test the activity date update."""
        session.add("POST", "/user/patron/updateActivityDate", body={})
        service.update_patron_activity("21168045918653")
        request = session.sent("POST", "/user/patron/updateActivityDate")[0]
        assert json.loads(request["data"]) == {"patronBarcode": "21168045918653"}

    def test_update_activity_bad_id(self, service):
        """Test that the barcode is checked."""
        with pytest.raises(FieldValidationFailed):
            service.update_patron_activity("not a barcode")


CUSTOM_INFORMATION = {
    "key": "123456",
    "fields": {
        "customInformation": [
            {"resource": "/user/patron/customInformation", "key": "1",
             "fields": {"code": {"key": "ACTIVEID"}, "data": "111,222"}},
            {"resource": "/user/patron/customInformation", "key": "2",
             "fields": {"code": {"key": "INACTVID"}, "data": "333"}},
            {"resource": "/user/patron/customInformation", "key": "3",
             "fields": {"code": {"key": "PREV_ID"}, "data": "222"}},
        ],
    },
}


class TestActiveId:
    """Test update_patron_active_id()."""

    def sent_lists(self, session):
        record = json.loads(session.sent("PUT", "/user/patron/key/123456")[0]["data"])
        return {
            entry["fields"]["code"]["key"]: entry["fields"]["data"]
            for entry in record["fields"]["customInformation"]
        }

    @pytest.fixture
    def custom_session(self, session):
        session.add("GET", "/user/patron/key/123456", body=CUSTOM_INFORMATION)
        session.add("PUT", "/user/patron/key/123456", body={"key": "123456"})
        return session

    def test_add_active(self, service, custom_session):
        """Test adding to ACTIVEID."""
        assert service.update_patron_active_id("123456", "444", "a") is True
        assert self.sent_lists(custom_session) == {"ACTIVEID": "111,222,444", "INACTVID": "333", "PREV_ID": "222"}

        params = custom_session.sent("GET", "/user/patron/key/123456")[0]["params"]
        assert params["includeFields"] == "customInformation{*}"

    def test_add_inactive(self, service, custom_session):
        """Test adding to INACTVID."""
        service.update_patron_active_id("123456", "444", "i")
        assert self.sent_lists(custom_session)["INACTVID"] == "333,444"

    def test_delete(self, service, custom_session):
        """Test removing a barcode from every ID list."""
        service.update_patron_active_id("123456", "222", "d")
        assert self.sent_lists(custom_session) == {"ACTIVEID": "111", "INACTVID": "333", "PREV_ID": ""}

    def test_bad_option(self, service):
        """Test that only a, i and d are options."""
        with pytest.raises(FieldValidationFailed):
            service.update_patron_active_id("123456", "444", "x")

    def test_no_record(self, service, session):
        """Test that nothing is written when the record is empty."""
        session.add("GET", "/user/patron/key/123456", body={})
        assert service.update_patron_active_id("123456", "444", "a") is False
        assert session.sent("PUT", "/user/patron/key/123456") == []
