"""Resource kinds the reconciler knows how to manage.

Each ``ResourceKind`` is plain data: where the resource lives in the API,
how its attributes are typed, whether mutations must be serialised per
tenant, and how it is created, destroyed and imported.  The coordinator
reads these entries; nothing here performs I/O.

Key concepts:
- ResourceKind: immutable description of one kind of remote resource.
- ResourceCatalog: lookup of kinds by name.
- parse_import_id: turns ``"main:zone-us"`` style IDs into identities.
"""

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import InvalidImportId, SchemaMismatch
from .reconcile.models import ResourceIdentity
from .reconcile.schema import (
    BooleanType,
    EnumType,
    FieldSpec,
    ListType,
    MapType,
    NullMode,
    NumberType,
    ObjectType,
    TextType,
    obj,
)
from .validators import validate_identifier, validate_import_segments

logger = logging.getLogger(__name__)


class CreateMode(str, Enum):
    POST = "post"
    # Resource always exists remotely; "create" reads it and patches it.
    ADOPT = "adopt"


class DestroyPolicy(str, Enum):
    DELETE = "delete"
    # Resource cannot be deleted; destroy switches it off instead.
    DEACTIVATE = "deactivate"
    FORGET = "forget"


def _identity(body: Mapping[str, Any]) -> Mapping[str, Any]:
    return body


@dataclass(frozen=True, slots=True)
class MixinStep:
    """Fields written by their own PATCH after the main request.

    Entries removed from *entries_field* are deleted one by one at
    *entry_path*, which takes the item placeholders plus ``{name}``.
    """

    fields: tuple[str, ...]
    entries_field: str
    entry_path: str

    def entry_url(self, identity: ResourceIdentity, name: str) -> str:
        return self.entry_path.format(**identity.path_params(), name=name)


@dataclass(frozen=True, slots=True)
class ResourceKind:
    """Immutable description of one kind of remote resource.

    Attributes:
        name: Kind name (``shipping_zone``).
        item_path: Path template of one resource; placeholders are
            ``{tenant}``, ``{site}``, ``{parent_id}`` and ``{id}``.
        collection_path: Path template used to create resources, or None
            when the kind cannot be created.
        id_field: Configuration field holding the resource code or id.
        schema: Declared attribute type.
        lock_scope: Tenant mutex scope, or None when concurrent mutations
            are tolerated.
        versioned: Updates must carry the last observed version.
        version_field: Dotted location of the version in update bodies.
        headers: Extra request headers for every call.
        update_method: ``PATCH`` sends the diff; ``PUT`` sends the full body.
        create_mode: How ``create`` reaches the remote resource.
        destroy_policy: How ``delete`` removes it.
        import_fields: Import ID segments, in order.
        immutable_fields: Fields that cannot change after creation.
        server_assigned_id: The id is taken from the create response.
        create_as_list: The create endpoint takes and returns a list.
        deactivate_body: Body sent by ``DestroyPolicy.DEACTIVATE``.
        mixin_step: Fields sent by a separate mixin PATCH, or None.
        prepare_config: Normalises raw desired configuration.
        to_wire: Converts an encoded request body before sending.
        from_wire: Converts a response body before decoding.
    """

    name: str
    item_path: str
    collection_path: str | None
    id_field: str
    schema: ObjectType
    lock_scope: str | None = None
    versioned: bool = False
    version_field: str = "metadata.version"
    headers: Mapping[str, str] = field(default_factory=dict)
    update_method: str = "PATCH"
    create_mode: CreateMode = CreateMode.POST
    destroy_policy: DestroyPolicy = DestroyPolicy.DELETE
    import_fields: tuple[str, ...] = ("id",)
    immutable_fields: tuple[str, ...] = ()
    server_assigned_id: bool = False
    create_as_list: bool = False
    deactivate_body: Mapping[str, Any] | None = None
    mixin_step: MixinStep | None = None
    prepare_config: Callable[[Mapping[str, Any]], Mapping[str, Any]] = _identity
    to_wire: Callable[[Mapping[str, Any]], Mapping[str, Any]] = _identity
    from_wire: Callable[[Mapping[str, Any]], Mapping[str, Any]] = _identity

    @property
    def requires_lock(self) -> bool:
        return self.lock_scope is not None

    @property
    def needs_site(self) -> bool:
        return "{site}" in self.item_path

    @property
    def needs_parent(self) -> bool:
        return "{parent_id}" in self.item_path

    def lock_key(self, tenant: str) -> str:
        """Mutex key shared by every resource of this scope in *tenant*."""
        return f"{self.lock_scope}:{tenant.lower()}"

    def item_url(self, identity: ResourceIdentity) -> str:
        return self.item_path.format(**identity.path_params())

    def collection_url(self, identity: ResourceIdentity) -> str:
        if self.collection_path is None:
            raise ValueError(f"{self.name} resources cannot be created")
        return self.collection_path.format(**identity.path_params())

    def identity(
        self,
        tenant: str,
        resource_id: str,
        *,
        site: str | None = None,
        parent_id: str | None = None,
    ) -> ResourceIdentity:
        """Build a validated identity for a resource of this kind.

        Raises:
            InvalidImportId: If a required segment is missing or malformed.
        """
        segments = [("resource id", resource_id)]
        if self.needs_site:
            segments.append(("site", site))
        if self.needs_parent:
            segments.append(("parent id", parent_id))
        for label, value in segments:
            ok, reason = validate_identifier(value or "", label.capitalize())
            if not ok:
                raise InvalidImportId(f"{self.name}: {reason}")
        return ResourceIdentity(
            kind=self.name,
            tenant=tenant.lower(),
            resource_id=resource_id,
            site=site if self.needs_site else None,
            parent_id=parent_id if self.needs_parent else None,
        )


class ResourceCatalog:
    """Registry of resource kinds keyed by name."""

    def __init__(self, kinds: list[ResourceKind]):
        self._kinds: dict[str, ResourceKind] = {k.name: k for k in kinds}

    def get(self, name: str) -> ResourceKind:
        try:
            return self._kinds[name]
        except KeyError:
            raise KeyError(
                f"Unknown resource kind '{name}'. "
                f"Known kinds: {', '.join(self.names())}"
            ) from None

    def names(self) -> list[str]:
        return sorted(self._kinds)

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)


def parse_import_id(
    kind: ResourceKind, raw: str, tenant: str
) -> ResourceIdentity:
    """Parse an import ID for *kind*.

    Formats: ``code`` for tenant-level kinds, ``site:zone_id`` for shipping
    zones and ``site:zone_id:method_id`` for shipping methods.

    Raises:
        InvalidImportId: If *raw* does not match the kind's format.
    """
    ok, reason = validate_import_segments(raw, kind.import_fields)
    if not ok:
        raise InvalidImportId(f"{kind.name}: {reason}")

    values = dict(zip(kind.import_fields, raw.split(":")))
    return kind.identity(
        tenant,
        values[kind.import_fields[-1]],
        site=values.get("site"),
        parent_id=values.get("zone_id"),
    )


# ---------------------------------------------------------------------------
# JSON documents held as canonical text
# ---------------------------------------------------------------------------


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _canonical_text(path: str, text: str) -> str:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaMismatch(path, f"invalid JSON: {e.msg}") from None
    return _canonical_json(parsed)


def _prepare_configuration(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    value = raw.get("value")
    if not isinstance(value, str):
        return raw
    return {**raw, "value": _canonical_text("value", value)}


def _configuration_to_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(body.get("value"), str):
        return {**body, "value": json.loads(body["value"])}
    return body


def _configuration_from_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    if "value" in body and body["value"] is not None:
        return {**body, "value": _canonical_json(body["value"])}
    return body


# ---------------------------------------------------------------------------
# Site mixins
#
# Configuration keeps two maps keyed by mixin name: ``mixins`` (JSON text)
# and ``mixin_schemas`` (schema URL).  On the wire the URLs live under
# ``metadata.mixins``.
# ---------------------------------------------------------------------------


def _prepare_site(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    mixins = raw.get("mixins")
    if not isinstance(mixins, Mapping):
        return raw
    canonical = {
        name: _canonical_text(f"mixins.{name}", text)
        if isinstance(text, str)
        else text
        for name, text in mixins.items()
    }
    schemas = raw.get("mixin_schemas")
    known = set(schemas) if isinstance(schemas, Mapping) else set()
    missing = sorted(set(canonical) - known)
    if missing:
        raise SchemaMismatch(
            f"mixin_schemas.{missing[0]}", "every mixin needs a schema URL"
        )
    return {**raw, "mixins": canonical}


def _site_to_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    body = dict(body)
    mixins = body.get("mixins")
    if isinstance(mixins, Mapping):
        body["mixins"] = {
            name: json.loads(text) if isinstance(text, str) else text
            for name, text in mixins.items()
        }
    if "mixinSchemas" in body:
        body["metadata"] = {"mixins": body.pop("mixinSchemas")}
    return body


def _site_from_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    body = dict(body)
    mixins = body.get("mixins")
    if isinstance(mixins, Mapping):
        body["mixins"] = {
            name: _canonical_json(doc) for name, doc in mixins.items()
        }
    metadata = body.get("metadata")
    if isinstance(metadata, Mapping) and isinstance(metadata.get("mixins"), Mapping):
        body["mixinSchemas"] = dict(metadata["mixins"])
    return body


# ---------------------------------------------------------------------------
# Taxes: the country code travels as ``location.countryCode``
# ---------------------------------------------------------------------------


def _prepare_tax(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    classes = raw.get("tax_classes")
    if not isinstance(classes, list):
        return raw
    if not classes:
        raise SchemaMismatch("tax_classes", "at least one tax class is required")
    defaults = sum(
        1 for tc in classes if isinstance(tc, Mapping) and tc.get("is_default") is True
    )
    if defaults > 1:
        raise SchemaMismatch(
            "tax_classes",
            f"only one tax class can be marked as default, but {defaults} are",
        )
    # The server reports is_default=false for classes that leave it out
    filled = [
        {**tc, "is_default": False}
        if isinstance(tc, Mapping) and tc.get("is_default") is None
        else tc
        for tc in classes
    ]
    return {**raw, "tax_classes": filled}


def _tax_to_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    if "countryCode" not in body:
        return body
    body = dict(body)
    body["location"] = {"countryCode": body.pop("countryCode")}
    return body


def _tax_from_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    location = body.get("location")
    if isinstance(location, Mapping) and "countryCode" in location:
        return {**body, "countryCode": location["countryCode"]}
    return body


# ---------------------------------------------------------------------------
# Delivery times
# ---------------------------------------------------------------------------

_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")
_CLOCK_TIME = re.compile(r"^([0-1][0-9]|2[0-3]):([0-5][0-9])$")

WEEKDAYS = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


def _check_format(path: str, value: Any, pattern: re.Pattern, example: str) -> None:
    if isinstance(value, str) and not pattern.match(value):
        raise SchemaMismatch(path, f"must look like {example}, got {value!r}")


def _prepare_delivery_time(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    """Check the cross-field rules of a delivery time configuration."""
    if not raw.get("is_for_all_zones") and raw.get("zone_id") is None:
        raise SchemaMismatch(
            "zone_id", "required unless is_for_all_zones is true"
        )

    day = raw.get("day")
    if isinstance(day, Mapping):
        given = [
            name
            for name in ("weekday", "single_date", "date_period")
            if day.get(name) is not None
        ]
        if len(given) > 1:
            raise SchemaMismatch(
                "day", f"set only one of weekday, single_date, date_period; got {', '.join(given)}"
            )
        _check_format(
            "day.single_date", day.get("single_date"), _ISO_TIMESTAMP,
            "2024-12-25T10:00:00.000Z",
        )
        period = day.get("date_period")
        if isinstance(period, Mapping):
            start, end = period.get("date_from"), period.get("date_to")
            for name, value in (("date_from", start), ("date_to", end)):
                _check_format(
                    f"day.date_period.{name}", value, _ISO_TIMESTAMP,
                    "2024-06-01T10:00:00.000Z",
                )
            if isinstance(start, str) and isinstance(end, str) and start > end:
                raise SchemaMismatch(
                    "day.date_period",
                    f"date_from ({start}) must not be after date_to ({end})",
                )

    slots = raw.get("slots")
    if isinstance(slots, list):
        for index, slot in enumerate(slots):
            window = slot.get("delivery_time_range") if isinstance(slot, Mapping) else None
            if not isinstance(window, Mapping):
                continue
            for name in ("time_from", "time_to"):
                _check_format(
                    f"slots[{index}].delivery_time_range.{name}",
                    window.get(name),
                    _CLOCK_TIME,
                    "10:00",
                )
    return raw


# ---------------------------------------------------------------------------
# Schemas: the schema URL is read from ``metadata.url``
# ---------------------------------------------------------------------------


def _schema_to_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    if "schemaUrl" not in body:
        return body
    return {k: v for k, v in body.items() if k != "schemaUrl"}


def _schema_from_wire(body: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = body.get("metadata")
    if isinstance(metadata, Mapping) and metadata.get("url"):
        return {**body, "schemaUrl": metadata["url"]}
    return body


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

_LOCALIZED = MapType(TextType())

_ADDRESS = obj(
    street=TextType(),
    street_number=FieldSpec(TextType(), api_name="streetNumber"),
    zip_code=FieldSpec(TextType(), api_name="zipCode"),
    city=TextType(),
    country=FieldSpec(TextType(), required=True),
    state=TextType(),
)

_LOCATION = obj(
    latitude=NumberType(),
    longitude=NumberType(),
)

SITE_SETTINGS_SCHEMA = obj(
    code=FieldSpec(TextType(), required=True),
    name=FieldSpec(TextType(), required=True),
    active=BooleanType(),
    default=BooleanType(),
    includes_tax=FieldSpec(BooleanType(), api_name="includesTax"),
    default_language=FieldSpec(TextType(), api_name="defaultLanguage"),
    languages=ListType(TextType(), order_insensitive=True),
    currency=TextType(),
    available_currencies=FieldSpec(
        ListType(TextType(), order_insensitive=True),
        api_name="availableCurrencies",
    ),
    ship_to_countries=FieldSpec(
        ListType(TextType(), order_insensitive=True),
        api_name="shipToCountries",
    ),
    tax_calculation_address_type=FieldSpec(
        EnumType(("BILLING_ADDRESS", "SHIPPING_ADDRESS")),
        api_name="taxCalculationAddressType",
    ),
    decimal_points=FieldSpec(
        NumberType(integer=True), api_name="decimalPoints"
    ),
    cart_calculation_scale=FieldSpec(
        NumberType(integer=True), api_name="cartCalculationScale"
    ),
    home_base=FieldSpec(
        obj(
            address=FieldSpec(_ADDRESS, null_mode=NullMode.LEAVES),
            location=FieldSpec(_LOCATION, atomic=True),
        ),
        api_name="homeBase",
    ),
    assisted_buying=FieldSpec(
        obj(storefront_url=FieldSpec(TextType(), api_name="storefrontUrl")),
        api_name="assistedBuying",
    ),
    mixins=MapType(TextType()),
    mixin_schemas=FieldSpec(MapType(TextType()), api_name="mixinSchemas"),
)

COUNTRY_SCHEMA = obj(
    code=FieldSpec(TextType(), required=True),
    name=FieldSpec(_LOCALIZED, computed=True),
    regions=FieldSpec(
        ListType(TextType(), order_insensitive=True), computed=True
    ),
    active=BooleanType(),
)

CURRENCY_SCHEMA = obj(
    code=FieldSpec(TextType(), required=True),
    name=FieldSpec(_LOCALIZED, required=True),
)

TENANT_CONFIGURATION_SCHEMA = obj(
    key=FieldSpec(TextType(), required=True),
    value=FieldSpec(TextType(), required=True),
    secured=BooleanType(),
)

PAYMENT_MODE_SCHEMA = obj(
    id=FieldSpec(TextType(), computed=True),
    code=FieldSpec(TextType(), required=True),
    active=BooleanType(),
    payment_provider=FieldSpec(
        TextType(), api_name="provider", required=True
    ),
    configuration=MapType(TextType()),
)

SHIPPING_ZONE_SCHEMA = obj(
    id=FieldSpec(TextType(), required=True),
    name=FieldSpec(_LOCALIZED, required=True),
    default=FieldSpec(BooleanType(), computed=True),
    ship_to=FieldSpec(
        ListType(
            obj(
                country=FieldSpec(TextType(), required=True),
                postal_code=FieldSpec(TextType(), api_name="postalCode"),
            ),
            order_insensitive=True,
            sort_keys=("country", "postal_code"),
            unique_by="country",
        ),
        api_name="shipTo",
        required=True,
    ),
)

_MONETARY_AMOUNT = obj(
    amount=FieldSpec(NumberType(), required=True),
    currency=FieldSpec(TextType(), required=True),
)

SHIPPING_METHOD_SCHEMA = obj(
    id=FieldSpec(TextType(), required=True),
    name=FieldSpec(_LOCALIZED, required=True),
    active=BooleanType(),
    max_order_value=FieldSpec(
        _MONETARY_AMOUNT, api_name="maxOrderValue", atomic=True
    ),
    fees=ListType(
        obj(
            min_order_value=FieldSpec(
                _MONETARY_AMOUNT, api_name="minOrderValue", atomic=True
            ),
            cost=FieldSpec(_MONETARY_AMOUNT, atomic=True),
            shipping_group_id=FieldSpec(
                TextType(), api_name="shippingGroupId"
            ),
        )
    ),
    shipping_tax_code=FieldSpec(TextType(), api_name="shippingTaxCode"),
    shipping_group_id=FieldSpec(TextType(), api_name="shippingGroupId"),
)

TAX_SCHEMA = obj(
    country_code=FieldSpec(TextType(), api_name="countryCode", required=True),
    tax_classes=FieldSpec(
        ListType(
            obj(
                code=FieldSpec(TextType(), required=True),
                name=FieldSpec(_LOCALIZED, required=True),
                rate=FieldSpec(NumberType(), required=True),
                description=_LOCALIZED,
                order=NumberType(integer=True),
                is_default=FieldSpec(BooleanType(), api_name="isDefault"),
            ),
            order_insensitive=True,
            sort_keys=("code",),
            unique_by="code",
        ),
        api_name="taxClasses",
        required=True,
    ),
)

_HHMM_RANGE = obj(
    time_from=FieldSpec(TextType(), api_name="timeFrom", required=True),
    time_to=FieldSpec(TextType(), api_name="timeTo", required=True),
)

DELIVERY_TIME_SCHEMA = obj(
    id=FieldSpec(TextType(), computed=True),
    name=FieldSpec(TextType(), required=True),
    site_code=FieldSpec(TextType(), api_name="siteCode", required=True),
    is_delivery_day=FieldSpec(BooleanType(), api_name="isDeliveryDay"),
    zone_id=FieldSpec(TextType(), api_name="zoneId"),
    is_for_all_zones=FieldSpec(BooleanType(), api_name="isForAllZones"),
    time_zone_id=FieldSpec(TextType(), api_name="timeZoneId", required=True),
    delivery_day_shift=FieldSpec(
        NumberType(integer=True), api_name="deliveryDayShift"
    ),
    day=FieldSpec(
        obj(
            weekday=EnumType(WEEKDAYS),
            single_date=FieldSpec(TextType(), api_name="singleDate"),
            date_period=FieldSpec(
                obj(
                    date_from=FieldSpec(
                        TextType(), api_name="dateFrom", required=True
                    ),
                    date_to=FieldSpec(TextType(), api_name="dateTo", required=True),
                ),
                api_name="datePeriod",
            ),
        ),
        atomic=True,
    ),
    slots=ListType(
        obj(
            shipping_method=FieldSpec(
                TextType(), api_name="shippingMethod", required=True
            ),
            capacity=FieldSpec(NumberType(integer=True), required=True),
            delivery_time_range=FieldSpec(
                _HHMM_RANGE, api_name="deliveryTimeRange", required=True
            ),
            cut_off_time=FieldSpec(
                obj(
                    time=FieldSpec(TextType(), required=True),
                    delivery_cycle_name=FieldSpec(
                        TextType(), api_name="deliveryCycleName", required=True
                    ),
                ),
                api_name="cutOffTime",
            ),
        )
    ),
)

SCHEMA_ENTITY_TYPES = (
    "CART",
    "CATEGORY",
    "COMPANY",
    "COUPON",
    "CUSTOMER",
    "CUSTOMER_ADDRESS",
    "ORDER",
    "PRODUCT",
    "QUOTE",
    "RETURN",
    "PRICE_LIST",
    "SITE",
    "CUSTOM_ENTITY",
    "VENDOR",
)

ATTRIBUTE_TYPES = (
    "TEXT",
    "NUMBER",
    "DECIMAL",
    "BOOLEAN",
    "DATE",
    "TIME",
    "DATE_TIME",
    "ENUM",
    "ARRAY",
    "OBJECT",
    "REFERENCE",
)


def _schema_attribute() -> ObjectType:
    """Attribute type of a custom schema; OBJECT attributes nest without limit."""
    fields: dict[str, FieldSpec] = {}
    attribute = ObjectType(fields=fields)
    allowed_value = obj(value=FieldSpec(TextType(), required=True))
    fields.update(
        key=FieldSpec(TextType(), required=True),
        name=FieldSpec(_LOCALIZED, required=True),
        description=FieldSpec(_LOCALIZED),
        type=FieldSpec(EnumType(ATTRIBUTE_TYPES), required=True),
        metadata=FieldSpec(
            obj(
                read_only=FieldSpec(BooleanType(), api_name="readOnly"),
                localized=BooleanType(),
                required=BooleanType(),
                nullable=BooleanType(),
            )
        ),
        values=FieldSpec(ListType(allowed_value)),
        attributes=FieldSpec(ListType(attribute)),
        array_type=FieldSpec(
            obj(
                type=EnumType(ATTRIBUTE_TYPES),
                localized=BooleanType(),
                values=ListType(allowed_value),
            ),
            api_name="arrayType",
        ),
    )
    return attribute


SCHEMA_ATTRIBUTE = _schema_attribute()

SCHEMA_SCHEMA = obj(
    id=FieldSpec(TextType(), required=True),
    name=FieldSpec(_LOCALIZED, required=True),
    types=FieldSpec(
        ListType(EnumType(SCHEMA_ENTITY_TYPES), order_insensitive=True),
        required=True,
    ),
    attributes=FieldSpec(ListType(SCHEMA_ATTRIBUTE), required=True),
    schema_url=FieldSpec(TextType(), api_name="schemaUrl", computed=True),
)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

_V2 = {"X-Version": "v2"}

SITE_SETTINGS = ResourceKind(
    name="site_settings",
    collection_path="/site/{tenant}/sites",
    item_path="/site/{tenant}/sites/{id}",
    id_field="code",
    schema=SITE_SETTINGS_SCHEMA,
    import_fields=("code",),
    immutable_fields=("code",),
    mixin_step=MixinStep(
        fields=("mixins", "mixin_schemas"),
        entries_field="mixins",
        entry_path="/site/{tenant}/sites/{id}/mixins/{name}",
    ),
    prepare_config=_prepare_site,
    to_wire=_site_to_wire,
    from_wire=_site_from_wire,
)

COUNTRY = ResourceKind(
    name="country",
    collection_path=None,
    item_path="/country/{tenant}/countries/{id}",
    id_field="code",
    schema=COUNTRY_SCHEMA,
    versioned=True,
    headers=_V2,
    create_mode=CreateMode.ADOPT,
    destroy_policy=DestroyPolicy.DEACTIVATE,
    deactivate_body={"active": False},
    import_fields=("code",),
    immutable_fields=("code",),
)

CURRENCY = ResourceKind(
    name="currency",
    collection_path="/currency/{tenant}/currencies",
    item_path="/currency/{tenant}/currencies/{id}",
    id_field="code",
    schema=CURRENCY_SCHEMA,
    versioned=True,
    headers=_V2,
    update_method="PUT",
    import_fields=("code",),
    immutable_fields=("code",),
)

TENANT_CONFIGURATION = ResourceKind(
    name="tenant_configuration",
    collection_path="/configuration/{tenant}/configurations",
    item_path="/configuration/{tenant}/configurations/{id}",
    id_field="key",
    schema=TENANT_CONFIGURATION_SCHEMA,
    versioned=True,
    version_field="version",
    update_method="PUT",
    create_as_list=True,
    import_fields=("key",),
    immutable_fields=("key",),
    prepare_config=_prepare_configuration,
    to_wire=_configuration_to_wire,
    from_wire=_configuration_from_wire,
)

PAYMENT_MODE = ResourceKind(
    name="payment_mode",
    collection_path="/payment-gateway/{tenant}/paymentmodes/config",
    item_path="/payment-gateway/{tenant}/paymentmodes/config/{id}",
    id_field="id",
    schema=PAYMENT_MODE_SCHEMA,
    update_method="PUT",
    server_assigned_id=True,
    import_fields=("id",),
    immutable_fields=("code", "payment_provider"),
)

SHIPPING_ZONE = ResourceKind(
    name="shipping_zone",
    collection_path="/shipping/{tenant}/{site}/zones",
    item_path="/shipping/{tenant}/{site}/zones/{id}",
    id_field="id",
    schema=SHIPPING_ZONE_SCHEMA,
    lock_scope="shipping_zone",
    update_method="PUT",
    import_fields=("site", "zone_id"),
    immutable_fields=("id",),
)

SHIPPING_METHOD = ResourceKind(
    name="shipping_method",
    collection_path="/shipping/{tenant}/{site}/zones/{parent_id}/methods",
    item_path="/shipping/{tenant}/{site}/zones/{parent_id}/methods/{id}",
    id_field="id",
    schema=SHIPPING_METHOD_SCHEMA,
    lock_scope="shipping_method",
    update_method="PUT",
    import_fields=("site", "zone_id", "method_id"),
    immutable_fields=("id",),
)

TAX = ResourceKind(
    name="tax",
    collection_path="/tax/{tenant}/taxes",
    item_path="/tax/{tenant}/taxes/{id}",
    id_field="country_code",
    schema=TAX_SCHEMA,
    versioned=True,
    update_method="PUT",
    import_fields=("country_code",),
    immutable_fields=("country_code",),
    prepare_config=_prepare_tax,
    to_wire=_tax_to_wire,
    from_wire=_tax_from_wire,
)

DELIVERY_TIME = ResourceKind(
    name="delivery_time",
    collection_path="/shipping/{tenant}/delivery-times",
    item_path="/shipping/{tenant}/delivery-times/{id}",
    id_field="id",
    schema=DELIVERY_TIME_SCHEMA,
    update_method="PUT",
    server_assigned_id=True,
    import_fields=("id",),
    immutable_fields=("name",),
    prepare_config=_prepare_delivery_time,
)

SCHEMA = ResourceKind(
    name="schema",
    collection_path="/schema/{tenant}/schemas",
    item_path="/schema/{tenant}/schemas/{id}",
    id_field="id",
    schema=SCHEMA_SCHEMA,
    versioned=True,
    # Localized names are sent and read in every language at once
    headers={"Content-Language": "*", "Accept-Language": "*"},
    update_method="PUT",
    import_fields=("id",),
    immutable_fields=("id",),
    to_wire=_schema_to_wire,
    from_wire=_schema_from_wire,
)

ALL_KINDS = [
    SITE_SETTINGS,
    COUNTRY,
    CURRENCY,
    TENANT_CONFIGURATION,
    PAYMENT_MODE,
    SHIPPING_ZONE,
    SHIPPING_METHOD,
    TAX,
    DELIVERY_TIME,
    SCHEMA,
]


def default_catalog() -> ResourceCatalog:
    """Catalog with every shipped resource kind."""
    return ResourceCatalog(ALL_KINDS)
