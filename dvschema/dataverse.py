"""
Dataverse Web API registry client.

Implements RegistryClient over HTTPS (OData v4, Web API v9.2) with httpx.
Every failed response is mapped to a RegistryError subclass:

- HTTP 404, or an entity/object-does-not-exist error code -> NotFoundError
- HTTP 429, or a service protection error code -> RateLimitedError
  (Retry-After header carried as retry_after)
- anything else, including transport errors -> RegistryError

attribute_payload() is the single place a FieldDescriptor becomes a
create call body. It dispatches on FieldKind through ATTRIBUTE_BUILDERS;
importing this module fails if any FieldKind has no builder.

Usage:
    with DataverseClient("https://org.crm.dynamics.com", token) as client:
        table = client.describe_table("account")
"""

import logging
from typing import Any, Callable, Optional

import httpx

from dvschema import constants
from dvschema.descriptors import (
    BooleanField,
    ChoiceField,
    DecimalField,
    FieldDescriptor,
    FieldKind,
    FloatField,
    IntegerField,
    MemoField,
    TextField,
)
from dvschema.errors import NotFoundError, RateLimitedError, RegistryError
from dvschema.registry_client import RelationshipSpec, Solution, TableDescription, check_logical_name

logger = logging.getLogger(__name__)

API_PATH = "/api/data/v9.2/"
ODATA = "Microsoft.Dynamics.CRM."


# =============================================================================
# Payload builders
# =============================================================================

def label(text: str) -> dict[str, Any]:
    """Localized label in the default language."""
    return {
        "@odata.type": f"{ODATA}Label",
        "LocalizedLabels": [
            {
                "@odata.type": f"{ODATA}LocalizedLabel",
                "Label": text,
                "LanguageCode": constants.DEFAULT_LANGUAGE_CODE,
            }
        ],
    }


def _base(descriptor: FieldDescriptor, metadata_type: str, attribute_type: str) -> dict[str, Any]:
    payload = {
        "@odata.type": f"{ODATA}{metadata_type}",
        "AttributeType": attribute_type,
        "AttributeTypeName": {"Value": f"{attribute_type}Type"},
        "SchemaName": descriptor.schema_name,
        "DisplayName": label(descriptor.display_name),
        "RequiredLevel": {
            "Value": descriptor.required_level.value,
            "CanBeChanged": True,
            "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
        },
    }
    if descriptor.description:
        payload["Description"] = label(descriptor.description)
    return payload


def _text(d: TextField) -> dict[str, Any]:
    payload = _base(d, "StringAttributeMetadata", "String")
    payload.update({"MaxLength": d.max_length, "FormatName": {"Value": "Text"}})
    return payload


def _memo(d: MemoField) -> dict[str, Any]:
    payload = _base(d, "MemoAttributeMetadata", "Memo")
    payload.update({"MaxLength": d.max_length, "Format": "TextArea"})
    return payload


def _integer(d: IntegerField) -> dict[str, Any]:
    payload = _base(d, "IntegerAttributeMetadata", "Integer")
    payload.update({"MinValue": d.min_value, "MaxValue": d.max_value, "Format": "None"})
    return payload


def _money(d: DecimalField) -> dict[str, Any]:
    payload = _base(d, "MoneyAttributeMetadata", "Money")
    payload.update({
        "Precision": d.precision,
        "PrecisionSource": d.precision_source,
        "MinValue": d.min_value,
        "MaxValue": d.max_value,
    })
    return payload


def _double(d: FloatField) -> dict[str, Any]:
    payload = _base(d, "DoubleAttributeMetadata", "Double")
    payload.update({"Precision": d.precision, "MinValue": d.min_value, "MaxValue": d.max_value})
    return payload


def _datetime(d: FieldDescriptor) -> dict[str, Any]:
    payload = _base(d, "DateTimeAttributeMetadata", "DateTime")
    payload["Format"] = "DateAndTime"
    return payload


def _date_only(d: FieldDescriptor) -> dict[str, Any]:
    payload = _base(d, "DateTimeAttributeMetadata", "DateTime")
    payload["Format"] = "DateOnly"
    return payload


def _boolean(d: BooleanField) -> dict[str, Any]:
    payload = _base(d, "BooleanAttributeMetadata", "Boolean")
    payload.update({
        "DefaultValue": d.default_value,
        "OptionSet": {
            "@odata.type": f"{ODATA}BooleanOptionSetMetadata",
            "OptionSetType": "Boolean",
            "TrueOption": {"Value": d.true_option.value, "Label": label(d.true_option.label)},
            "FalseOption": {"Value": d.false_option.value, "Label": label(d.false_option.label)},
        },
    })
    return payload


def _picklist(d: ChoiceField) -> dict[str, Any]:
    payload = _base(d, "PicklistAttributeMetadata", "Picklist")
    payload["OptionSet"] = {
        "@odata.type": f"{ODATA}OptionSetMetadata",
        "IsGlobal": False,
        "OptionSetType": "Picklist",
        "Options": [{"Value": o.value, "Label": label(o.label)} for o in d.options],
    }
    return payload


def _lookup(d: FieldDescriptor) -> dict[str, Any]:
    return _base(d, "LookupAttributeMetadata", "Lookup")


def _customer(d: FieldDescriptor) -> dict[str, Any]:
    return _base(d, "ComplexLookupAttributeMetadata", "Customer")


ATTRIBUTE_BUILDERS: dict[FieldKind, Callable[[Any], dict[str, Any]]] = {
    FieldKind.TEXT: _text,
    FieldKind.MEMO: _memo,
    FieldKind.INTEGER: _integer,
    FieldKind.DECIMAL: _money,
    FieldKind.FLOAT: _double,
    FieldKind.DATETIME: _datetime,
    FieldKind.DATE_ONLY: _date_only,
    FieldKind.BOOLEAN: _boolean,
    FieldKind.CHOICE: _picklist,
    FieldKind.LOOKUP: _lookup,
    FieldKind.CUSTOMER: _customer,
}

_unbuilt = [kind.value for kind in FieldKind if kind not in ATTRIBUTE_BUILDERS]
if _unbuilt:
    raise RuntimeError(f"No attribute payload builder for field kind(s): {', '.join(_unbuilt)}")


def attribute_payload(descriptor: FieldDescriptor) -> dict[str, Any]:
    """Build the AttributeMetadata body for a descriptor."""
    return ATTRIBUTE_BUILDERS[descriptor.kind](descriptor)


# =============================================================================
# Error classification
# =============================================================================

def parse_error_code(code: Any) -> Optional[int]:
    """
    Parse a Web API error code ("0x80060888" or a decimal string).

    Hex codes are returned as signed 32-bit integers, matching the
    organization service fault codes.
    """
    if code is None:
        return None
    if isinstance(code, int):
        return code
    text = str(code).strip()
    try:
        value = int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        return None
    if value >= 2 ** 31:
        value -= 2 ** 32
    return value


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(response: httpx.Response) -> RegistryError:
    """Map a failed response to the matching RegistryError subclass."""
    status = response.status_code
    code = None
    message = response.reason_phrase or f"HTTP {status}"

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = parse_error_code(body["error"].get("code"))
        message = body["error"].get("message") or message

    if status == 429 or code in constants.RATE_LIMIT_CODES:
        return RateLimitedError(
            f"Rate limited: {message}", status=status, code=code, retry_after=_retry_after(response),
        )
    if status == 404 or code in constants.NOT_FOUND_CODES:
        return NotFoundError(message, status=status, code=code)
    return RegistryError(f"HTTP {status}: {message}", status=status, code=code)


def json_body(response: httpx.Response) -> dict[str, Any]:
    """
    Decode a successful response's JSON object body.

    Raises:
        RegistryError: If the body is not a JSON object
    """
    try:
        body = response.json()
    except ValueError as e:
        raise RegistryError(
            f"Malformed response from {response.request.method} {response.request.url.path}: {e}",
            status=response.status_code,
        ) from e
    if not isinstance(body, dict):
        raise RegistryError(
            f"Unexpected response from {response.request.method} {response.request.url.path}: "
            f"expected a JSON object, got {type(body).__name__}",
            status=response.status_code,
        )
    return body


def _quote(value: str) -> str:
    """OData string literal."""
    return "'" + value.replace("'", "''") + "'"


# =============================================================================
# Client
# =============================================================================

class DataverseClient:
    """
    RegistryClient over the Dataverse Web API.

    Owns one httpx.Client; close it (or use the client as a context
    manager) when done. No stage closes it.

    Args:
        environment_url: Organization URL, e.g. https://org.crm.dynamics.com
        token: OAuth bearer token for the environment
        solution: Solution new tables are added to
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        environment_url: str,
        token: str,
        solution: Optional[str] = None,
        timeout: float = constants.DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.environment_url = environment_url.rstrip("/")
        if not self.environment_url:
            raise ValueError("DataverseClient requires an environment URL")
        self.solution = solution
        self._client = httpx.Client(
            base_url=self.environment_url + API_PATH,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
                "OData-MaxVersion": "4.0",
                "OData-Version": "4.0",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "DataverseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        solution: Optional[str] = None,
    ) -> httpx.Response:
        headers = {}
        if solution:
            headers["MSCRM.SolutionUniqueName"] = solution

        logger.debug(f"{method} {path}")
        try:
            response = self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise RegistryError(f"Request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise RegistryError(f"Request failed: {method} {path}: {e}") from e

        if response.is_success:
            return response
        raise error_from_response(response)

    # -------------------------------------------------------------------------
    # RegistryClient
    # -------------------------------------------------------------------------

    def describe_table(self, name: str) -> TableDescription:
        response = self._request(
            "GET",
            f"EntityDefinitions(LogicalName={_quote(name.strip().lower())})",
            params={"$select": "LogicalName", "$expand": "Attributes($select=LogicalName)"},
        )
        data = json_body(response)
        attributes = data.get("Attributes") or []
        return TableDescription(
            name=data.get("LogicalName") or name.strip().lower(),
            # attributes without a logical name are skipped
            fields=frozenset(
                a["LogicalName"].lower()
                for a in attributes
                if isinstance(a, dict) and isinstance(a.get("LogicalName"), str) and a["LogicalName"]
            ),
        )

    def validate_name_syntax(self, name: str) -> tuple[bool, Optional[str]]:
        return check_logical_name(name)

    def create_table(
        self,
        display_name: str,
        schema_name: str,
        collection_display_name: str,
        description: Optional[str] = None,
        primary_field: Optional[FieldDescriptor] = None,
    ) -> None:
        body: dict[str, Any] = {
            "@odata.type": f"{ODATA}EntityMetadata",
            "SchemaName": schema_name,
            "DisplayName": label(display_name),
            "DisplayCollectionName": label(collection_display_name),
            "OwnershipType": "UserOwned",
            "IsActivity": False,
            "HasActivities": False,
            "HasNotes": False,
        }
        if description:
            body["Description"] = label(description)
        if primary_field is not None:
            primary = attribute_payload(primary_field)
            primary["IsPrimaryName"] = True
            body["Attributes"] = [primary]
        self._request("POST", "EntityDefinitions", json=body, solution=self.solution)

    def create_field(self, table_name: str, descriptor: FieldDescriptor, solution: Optional[str]) -> None:
        self._request(
            "POST",
            f"EntityDefinitions(LogicalName={_quote(table_name.lower())})/Attributes",
            json=attribute_payload(descriptor),
            solution=solution,
        )

    def create_relationship(
        self,
        source_table: str,
        target_table: str,
        schema_name: str,
        descriptor: FieldDescriptor,
        solution: Optional[str],
    ) -> None:
        body = {
            "@odata.type": f"{ODATA}OneToManyRelationshipMetadata",
            "SchemaName": schema_name,
            "ReferencedEntity": target_table.lower(),
            "ReferencedAttribute": f"{target_table.lower()}id",
            "ReferencingEntity": source_table.lower(),
            "Lookup": attribute_payload(descriptor),
        }
        self._request("POST", "RelationshipDefinitions", json=body, solution=solution)

    def create_customer_relationships(
        self,
        source_table: str,
        relationships: list[RelationshipSpec],
        descriptor: FieldDescriptor,
        solution: Optional[str],
    ) -> None:
        body: dict[str, Any] = {
            "Lookup": attribute_payload(descriptor),
            "OneToManyRelationships": [
                {
                    "@odata.type": f"{ODATA}OneToManyRelationshipMetadata",
                    "SchemaName": rel.schema_name,
                    "ReferencedEntity": rel.target_table.lower(),
                    "ReferencingEntity": source_table.lower(),
                }
                for rel in relationships
            ],
        }
        if solution:
            body["SolutionUniqueName"] = solution
        self._request("POST", "CreateCustomerRelationships", json=body, solution=solution)

    def publish(self) -> None:
        self._request("POST", "PublishAllXml", json={})

    # -------------------------------------------------------------------------
    # Solutions
    # -------------------------------------------------------------------------

    def list_solutions(self) -> list[Solution]:
        """Unmanaged, visible solutions with their publisher prefixes."""
        response = self._request(
            "GET",
            "solutions",
            params={
                "$select": "uniquename,friendlyname,version",
                "$expand": "publisherid($select=customizationprefix)",
                "$filter": "ismanaged eq false and isvisible eq true",
                "$orderby": "friendlyname",
            },
        )
        return [_solution(row) for row in json_body(response).get("value") or []]

    def get_publisher_prefix(self, solution_unique_name: str) -> str:
        """
        Customization prefix of a solution's publisher.

        Raises:
            NotFoundError: If no solution has this unique name
        """
        response = self._request(
            "GET",
            "solutions",
            params={
                "$select": "uniquename",
                "$expand": "publisherid($select=customizationprefix)",
                "$filter": f"uniquename eq {_quote(solution_unique_name)}",
            },
        )
        rows = json_body(response).get("value") or []
        if not rows:
            raise NotFoundError(f"Solution '{solution_unique_name}' not found")
        prefix = _solution(rows[0]).publisher_prefix
        if not prefix:
            raise RegistryError(f"Solution '{solution_unique_name}' has no publisher prefix")
        return prefix


def _solution(row: dict[str, Any]) -> Solution:
    publisher = row.get("publisherid") or {}
    return Solution(
        unique_name=row.get("uniquename", ""),
        friendly_name=row.get("friendlyname") or row.get("uniquename", ""),
        publisher_prefix=publisher.get("customizationprefix") or "",
        version=row.get("version") or "",
    )
