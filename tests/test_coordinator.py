"""Tests for reconcile/coordinator.py -- the reconciliation state machine.

Covers:
- Phase sequences for locked and unlocked kinds, no-op updates
- Request bodies: full PUT bodies, partial PATCH bodies, list-wrapped
  creates, version handling
- Create modes (POST, adopt) and destroy policies (delete, deactivate)
- Import and refresh (drift detection)
- Error handling: Transient retried, Conflict not retried, token
  invalidation, immutable fields, deadline expiry, lock release on failure
- Lock serialization across coordinators sharing a registry
"""

import asyncio

import pytest

from emporix_reconciler.errors import (
    AuthenticationFailed,
    Cancelled,
    Conflict,
    InvalidImportId,
    NotFound,
    SchemaMismatch,
    Transient,
)
from emporix_reconciler.reconcile.coordinator import ReconciliationCoordinator
from emporix_reconciler.reconcile.locks import TenantMutexRegistry
from emporix_reconciler.reconcile.models import ReconcilePhase as P

ZONE = {
    "id": "eu",
    "name": {"en": "Europe"},
    "ship_to": [{"country": "FR"}, {"country": "DE", "postal_code": "10"}],
}
SITE = {"code": "main", "name": "Main site", "currency": "EUR", "active": True}
ZONE_PATH = "/shipping/acme/main/zones/eu"
SITE_PATH = "/site/acme/sites/main"
COUNTRY_PATH = "/country/acme/countries/DE"


def make_coordinator(gateway, tokens, catalog, credentials, locks=None, **kwargs):
    options = {"deadline": 5.0, "max_retries": 3, "backoff": 0}
    options.update(kwargs)
    return ReconciliationCoordinator(
        gateway,
        tokens,
        locks if locks is not None else TenantMutexRegistry(),
        catalog,
        "acme",
        credentials,
        **options,
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_locked_kind_phases(self, coordinator):
        result = await coordinator.create("shipping_zone", ZONE, site="main")

        assert result.report.phases == [
            P.START,
            P.TOKEN_ACQUIRED,
            P.LOCK_ACQUIRED,
            P.PATCH_COMPUTED,
            P.DISPATCHED,
            P.APPLIED,
            P.LOCK_RELEASED,
        ]
        assert result.report.success
        assert result.report.dispatched

    async def test_unlocked_kind_skips_lock_phases(self, coordinator):
        result = await coordinator.create("site_settings", SITE)

        assert result.report.phases == [
            P.START,
            P.TOKEN_ACQUIRED,
            P.PATCH_COMPUTED,
            P.DISPATCHED,
            P.APPLIED,
        ]

    async def test_request_body_and_identity(self, coordinator, gateway):
        result = await coordinator.create("shipping_zone", ZONE, site="main")

        (_, path, details), = gateway.calls_to("create")
        assert path == "/shipping/acme/main/zones"
        assert details["body"] == {
            "id": "eu",
            "name": {"en": "Europe"},
            "shipTo": [{"country": "FR"}, {"country": "DE", "postalCode": "10"}],
        }
        assert details["token"] == "token-1"
        assert result.state.identity.site == "main"
        assert result.state.identity.resource_id == "eu"
        assert ZONE_PATH in gateway.resources

    async def test_state_is_canonical(self, coordinator):
        result = await coordinator.create("shipping_zone", ZONE, site="main")

        countries = [e["country"] for e in result.state.tree.to_config()["ship_to"]]
        assert countries == ["DE", "FR"]

    async def test_shipping_method_under_zone(self, coordinator, gateway):
        method = {"id": "std", "name": {"en": "Standard"}, "active": True}

        result = await coordinator.create(
            "shipping_method", method, site="main", parent_id="eu"
        )

        assert gateway.calls_to("create")[0][1] == "/shipping/acme/main/zones/eu/methods"
        assert result.state.identity.parent_id == "eu"

    async def test_missing_site_rejected(self, coordinator):
        with pytest.raises(InvalidImportId, match="Site cannot be empty"):
            await coordinator.create("shipping_zone", ZONE)

    async def test_malformed_configuration_rejected(self, coordinator, gateway):
        with pytest.raises(SchemaMismatch, match="ship_to"):
            await coordinator.create(
                "shipping_zone", {"id": "eu", "name": {"en": "E"}}, site="main"
            )
        assert gateway.calls == []

    async def test_unknown_kind(self, coordinator):
        with pytest.raises(KeyError, match="Unknown resource kind 'warehouse'"):
            await coordinator.create("warehouse", {})

    async def test_transient_failure_retried(self, coordinator, gateway):
        gateway.fail_next("create", Transient("connection refused"))

        result = await coordinator.create("site_settings", SITE)

        assert len(gateway.calls_to("create")) == 2
        assert result.report.success

    async def test_existing_resource_is_conflict(self, coordinator, gateway):
        gateway.seed(SITE_PATH, {"code": "main", "name": "Old"})

        with pytest.raises(Conflict) as exc_info:
            await coordinator.create("site_settings", SITE)

        assert len(gateway.calls_to("create")) == 1
        assert exc_info.value.identity.resource_id == "main"
        assert exc_info.value.report.phases[-1] == P.FAILED

    async def test_versioned_create_without_echo_reads_back(self, coordinator, gateway):
        gateway.echo = False

        result = await coordinator.create(
            "currency", {"code": "EUR", "name": {"en": "Euro"}}
        )

        assert len(gateway.calls_to("read")) == 1
        assert result.state.version == 1
        assert gateway.calls_to("create")[0][2]["headers"] == {"X-Version": "v2"}

    async def test_server_assigned_id(self, coordinator, gateway):
        gateway.assign_ids = True

        result = await coordinator.create(
            "payment_mode", {"code": "invoice", "payment_provider": "INVOICE"}
        )

        assert result.state.identity.resource_id == "gen-1"
        assert result.state.tree.get(("id",)).node.value == "gen-1"
        assert result.report.identity == "payment_mode acme/gen-1"
        body = gateway.calls_to("create")[0][2]["body"]
        assert body == {"code": "invoice", "provider": "INVOICE"}

    async def test_list_wrapped_create_with_json_value(self, coordinator, gateway):
        desired = {"key": "project_country", "value": '{"b": 1, "a": 2}'}

        result = await coordinator.create("tenant_configuration", desired)

        body = gateway.calls_to("create")[0][2]["body"]
        assert body == [{"key": "project_country", "value": {"a": 2, "b": 1}}]
        assert result.state.tree.to_config()["value"] == '{"a":2,"b":1}'


class TestAdopt:
    async def test_adopt_patches_only_differences(self, coordinator, gateway):
        gateway.seed(
            COUNTRY_PATH,
            {"code": "DE", "name": {"en": "Germany"}, "regions": ["EU"], "active": False},
            version=3,
        )

        result = await coordinator.create("country", {"code": "DE", "active": True})

        assert gateway.calls_to("create") == []
        (_, path, details), = gateway.calls_to("patch")
        assert path == COUNTRY_PATH
        assert details["body"] == {"active": True}
        assert details["version"] == 3
        assert details["method"] == "PATCH"
        assert details["headers"] == {"X-Version": "v2"}
        assert result.state.version == 4
        # Computed fields are tracked from the server
        assert result.state.tree.get(("name",)).is_value

    async def test_adopt_without_differences_sends_nothing(self, coordinator, gateway):
        gateway.seed(COUNTRY_PATH, {"code": "DE", "active": True}, version=3)

        result = await coordinator.create("country", {"code": "DE", "active": True})

        assert gateway.calls_to("patch") == []
        assert P.DISPATCHED not in result.report.phases
        assert result.report.success
        assert result.state.version == 3

    async def test_adopt_missing_resource(self, coordinator):
        with pytest.raises(NotFound):
            await coordinator.create("country", {"code": "XX", "active": True})


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    async def test_no_change_skips_dispatch(self, coordinator, gateway):
        created = await coordinator.create("shipping_zone", ZONE, site="main")
        reordered = {**ZONE, "ship_to": list(reversed(ZONE["ship_to"]))}

        result = await coordinator.update(created.state, reordered)

        assert result.report.phases == [
            P.START,
            P.TOKEN_ACQUIRED,
            P.LOCK_ACQUIRED,
            P.PATCH_COMPUTED,
            P.APPLIED,
            P.LOCK_RELEASED,
        ]
        assert not result.report.dispatched
        assert result.patch.is_empty
        assert result.state is created.state
        assert gateway.calls_to("patch") == []

    async def test_patch_kind_sends_partial_body_with_nulls(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        desired = {k: v for k, v in SITE.items() if k != "currency"}
        desired["active"] = False

        result = await coordinator.update(created.state, desired)

        (_, path, details), = gateway.calls_to("patch")
        assert path == SITE_PATH
        assert details["method"] == "PATCH"
        assert details["body"] == {"active": False, "currency": None}
        assert details["version"] is None
        assert result.report.patch_paths == ["active", "currency"]
        assert "currency" not in gateway.resources[SITE_PATH]

    async def test_update_is_idempotent(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        desired = {**SITE, "currency": None}

        first = await coordinator.update(created.state, desired)
        second = await coordinator.update(first.state, desired)

        assert second.patch.is_empty
        assert len(gateway.calls_to("patch")) == 1

    async def test_put_kind_sends_full_body(self, coordinator, gateway):
        created = await coordinator.create("shipping_zone", ZONE, site="main")
        desired = {**ZONE, "name": {"en": "Europe", "de": "Europa"}}

        await coordinator.update(created.state, desired)

        (_, _, details), = gateway.calls_to("patch")
        assert details["method"] == "PUT"
        assert details["body"] == {
            "id": "eu",
            "name": {"en": "Europe", "de": "Europa"},
            "shipTo": [{"country": "FR"}, {"country": "DE", "postalCode": "10"}],
        }

    async def test_versioned_kind_sends_version(self, coordinator, gateway):
        created = await coordinator.create(
            "currency", {"code": "EUR", "name": {"en": "Euro"}}
        )

        result = await coordinator.update(
            created.state, {"code": "EUR", "name": {"en": "Euro", "de": "Euro"}}
        )

        assert gateway.calls_to("patch")[0][2]["version"] == 1
        assert result.state.version == 2
        assert result.report.version == 2

    async def test_conflict_not_retried(self, coordinator, gateway):
        created = await coordinator.create("shipping_zone", ZONE, site="main")
        gateway.fail_next("patch", Conflict("PUT failed with status 409"))

        with pytest.raises(Conflict) as exc_info:
            await coordinator.update(created.state, {**ZONE, "name": {"en": "EU"}})

        error = exc_info.value
        assert len(gateway.calls_to("patch")) == 1
        assert error.identity == created.state.identity
        assert error.report.phases[-2:] == [P.FAILED, P.LOCK_RELEASED]
        assert not error.report.success
        assert not coordinator.locks.lock_for("shipping_zone:acme").locked()

    async def test_stale_version_is_conflict(self, coordinator, gateway):
        created = await coordinator.create(
            "currency", {"code": "EUR", "name": {"en": "Euro"}}
        )
        gateway.versions["/currency/acme/currencies/EUR"] = 7

        with pytest.raises(Conflict):
            await coordinator.update(
                created.state, {"code": "EUR", "name": {"en": "Euro!"}}
            )

    async def test_immutable_field_rejected(self, coordinator, gateway):
        gateway.assign_ids = True
        created = await coordinator.create(
            "payment_mode", {"code": "invoice", "payment_provider": "INVOICE"}
        )

        with pytest.raises(SchemaMismatch, match="payment_provider: cannot be changed") as exc_info:
            await coordinator.update(
                created.state, {"code": "invoice", "payment_provider": "STRIPE"}
            )

        assert gateway.calls_to("patch") == []
        assert exc_info.value.report.patch_paths == ["payment_provider"]

    async def test_computed_id_does_not_trigger_update(self, coordinator, gateway):
        gateway.assign_ids = True
        desired = {"code": "invoice", "payment_provider": "INVOICE"}
        created = await coordinator.create("payment_mode", desired)

        result = await coordinator.update(created.state, desired)

        assert result.patch.is_empty

    async def test_malformed_update_reports_failure(self, coordinator):
        created = await coordinator.create("site_settings", SITE)

        with pytest.raises(SchemaMismatch) as exc_info:
            await coordinator.update(created.state, {**SITE, "decimal_points": "two"})

        error = exc_info.value
        assert error.identity == created.state.identity
        assert error.report.phases == [P.START, P.FAILED]

    async def test_tenant_configuration_value_normalised(self, coordinator, gateway):
        created = await coordinator.create(
            "tenant_configuration", {"key": "k", "value": '{"a": 1, "b": [1, 2]}'}
        )

        result = await coordinator.update(
            created.state, {"key": "k", "value": '{ "b": [1, 2], "a": 1 }'}
        )

        assert result.patch.is_empty

    async def test_tenant_configuration_put_carries_version(
        self, coordinator, gateway
    ):
        created = await coordinator.create(
            "tenant_configuration", {"key": "k", "value": '{"a": 1}'}
        )
        assert created.state.version == 1

        result = await coordinator.update(
            created.state, {"key": "k", "value": '{"a": 2}'}
        )

        details = gateway.calls_to("patch")[0][2]
        assert details["method"] == "PUT"
        assert details["version"] == 1
        assert details["version_field"] == "version"
        assert details["body"] == {"key": "k", "value": {"a": 2}}
        assert result.state.version == 2

    async def test_stale_tenant_configuration_is_conflict(
        self, coordinator, gateway
    ):
        created = await coordinator.create(
            "tenant_configuration", {"key": "k", "value": "1"}
        )
        gateway.versions["/configuration/acme/configurations/k"] = 3

        with pytest.raises(Conflict):
            await coordinator.update(created.state, {"key": "k", "value": "2"})


# ---------------------------------------------------------------------------
# Site mixins
# ---------------------------------------------------------------------------

LOYALTY_URL = "https://schemas.example.com/loyalty.json"
REFERRAL_URL = "https://schemas.example.com/referral.json"


def mixin_site(**mixins):
    return {
        **SITE,
        "mixins": mixins,
        "mixin_schemas": {
            name: LOYALTY_URL if name == "loyalty" else REFERRAL_URL
            for name in mixins
        },
    }


class TestSiteMixins:
    async def test_create_writes_mixins_after_the_site(self, coordinator, gateway):
        result = await coordinator.create(
            "site_settings", mixin_site(loyalty='{"tier": "gold"}')
        )

        (_, _, created), = gateway.calls_to("create")
        assert created["body"] == {
            "code": "main",
            "name": "Main site",
            "currency": "EUR",
            "active": True,
        }
        (_, path, details), = gateway.calls_to("patch")
        assert path == SITE_PATH
        assert details["method"] == "PATCH"
        assert details["version"] is None
        assert details["body"] == {
            "mixins": {"loyalty": {"tier": "gold"}},
            "metadata": {"mixins": {"loyalty": LOYALTY_URL}},
        }
        assert gateway.resources[SITE_PATH]["mixins"] == {"loyalty": {"tier": "gold"}}
        assert result.state.tree.to_config()["mixins"] == {"loyalty": '{"tier":"gold"}'}
        assert result.report.phases.count(P.DISPATCHED) == 1

    async def test_site_without_mixins_sends_one_request(self, coordinator, gateway):
        await coordinator.create("site_settings", SITE)

        assert len(gateway.calls) == 1

    async def test_update_of_mixins_only(self, coordinator, gateway):
        created = await coordinator.create(
            "site_settings", mixin_site(loyalty='{"tier": "gold"}')
        )

        result = await coordinator.update(
            created.state, mixin_site(loyalty='{"tier": "silver"}')
        )

        patches = gateway.calls_to("patch")
        assert len(patches) == 2
        assert patches[-1][2]["body"] == {
            "mixins": {"loyalty": {"tier": "silver"}},
            "metadata": {"mixins": {"loyalty": LOYALTY_URL}},
        }
        assert result.report.patch_paths == ["mixins"]
        assert result.report.dispatched
        assert gateway.resources[SITE_PATH]["mixins"]["loyalty"] == {"tier": "silver"}

    async def test_update_of_site_and_mixins(self, coordinator, gateway):
        created = await coordinator.create(
            "site_settings", mixin_site(loyalty='{"tier": "gold"}')
        )
        desired = {**mixin_site(loyalty='{"tier": "silver"}'), "active": False}

        await coordinator.update(created.state, desired)

        main, mixins = gateway.calls_to("patch")[1:]
        assert main[2]["body"] == {"active": False}
        assert set(mixins[2]["body"]) == {"mixins", "metadata"}

    async def test_removed_mixin_is_deleted(self, coordinator, gateway):
        created = await coordinator.create(
            "site_settings",
            mixin_site(loyalty='{"tier": "gold"}', referral='{"code": "X1"}'),
        )

        result = await coordinator.update(
            created.state, mixin_site(loyalty='{"tier": "gold"}')
        )

        (_, path, _), = gateway.calls_to("delete")
        assert path == "/site/acme/sites/main/mixins/referral"
        assert gateway.resources[SITE_PATH]["mixins"] == {"loyalty": {"tier": "gold"}}
        assert gateway.resources[SITE_PATH]["metadata"]["mixins"] == {
            "loyalty": LOYALTY_URL
        }
        assert result.state.tree.to_config()["mixins"] == {
            "loyalty": '{"tier":"gold"}'
        }

    async def test_dropping_all_mixins(self, coordinator, gateway):
        created = await coordinator.create(
            "site_settings", mixin_site(loyalty='{"tier": "gold"}')
        )

        first = await coordinator.update(created.state, SITE)
        second = await coordinator.update(first.state, SITE)

        assert [call[1] for call in gateway.calls_to("delete")] == [
            "/site/acme/sites/main/mixins/loyalty"
        ]
        assert len(gateway.calls_to("patch")) == 1
        assert first.state.tree.to_config()["mixins"] is None
        assert second.patch.is_empty


# ---------------------------------------------------------------------------
# Taxes, delivery times, schemas
# ---------------------------------------------------------------------------

TAX_PATH = "/tax/acme/taxes/DE"
STANDARD = {"code": "STANDARD", "name": {"en": "Standard"}, "rate": 19, "is_default": True}
REDUCED = {"code": "REDUCED", "name": {"en": "Reduced"}, "rate": 7}

DELIVERY_TIME = {
    "name": "monday-express",
    "site_code": "main",
    "zone_id": "eu",
    "time_zone_id": "Europe/Berlin",
    "day": {"weekday": "MONDAY"},
    "slots": [
        {
            "shipping_method": "express",
            "capacity": 10,
            "delivery_time_range": {"time_from": "10:00", "time_to": "12:00"},
        }
    ],
}

LOYALTY_SCHEMA = {
    "id": "loyalty",
    "name": {"en": "Loyalty"},
    "types": ["CUSTOMER"],
    "attributes": [
        {
            "key": "tier",
            "name": {"en": "Tier"},
            "type": "OBJECT",
            "attributes": [
                {"key": "level", "name": {"en": "Level"}, "type": "NUMBER"}
            ],
        }
    ],
}


class TestTax:
    async def test_create_nests_country_code(self, coordinator, gateway):
        result = await coordinator.create(
            "tax", {"country_code": "DE", "tax_classes": [STANDARD]}
        )

        (_, path, details), = gateway.calls_to("create")
        assert path == "/tax/acme/taxes"
        assert details["body"] == {
            "location": {"countryCode": "DE"},
            "taxClasses": [
                {
                    "code": "STANDARD",
                    "name": {"en": "Standard"},
                    "rate": 19,
                    "isDefault": True,
                }
            ],
        }
        assert result.state.identity.resource_id == "DE"
        assert TAX_PATH in gateway.resources
        assert result.state.version == 1

    async def test_update_puts_every_class_with_version(self, coordinator, gateway):
        created = await coordinator.create(
            "tax", {"country_code": "DE", "tax_classes": [STANDARD]}
        )

        result = await coordinator.update(
            created.state, {"country_code": "DE", "tax_classes": [STANDARD, REDUCED]}
        )

        (_, path, details), = gateway.calls_to("patch")
        assert path == TAX_PATH
        assert details["method"] == "PUT"
        assert details["version"] == 1
        assert details["body"]["location"] == {"countryCode": "DE"}
        flags = {tc["code"]: tc["isDefault"] for tc in details["body"]["taxClasses"]}
        assert flags == {"REDUCED": False, "STANDARD": True}
        assert result.state.version == 2

    async def test_echoed_default_flag_causes_no_drift(self, coordinator, gateway):
        desired = {"country_code": "DE", "tax_classes": [STANDARD, REDUCED]}
        created = await coordinator.create("tax", desired)

        refreshed = await coordinator.read(created.state)

        assert coordinator.plan("tax", desired, refreshed.state).is_empty

    async def test_country_code_is_immutable(self, coordinator, gateway):
        created = await coordinator.create(
            "tax", {"country_code": "DE", "tax_classes": [STANDARD]}
        )

        with pytest.raises(SchemaMismatch, match="country_code"):
            await coordinator.update(
                created.state, {"country_code": "AT", "tax_classes": [STANDARD]}
            )


class TestDeliveryTime:
    async def test_create_takes_server_id(self, coordinator, gateway):
        gateway.assign_ids = True

        result = await coordinator.create("delivery_time", DELIVERY_TIME)

        (_, path, details), = gateway.calls_to("create")
        assert path == "/shipping/acme/delivery-times"
        assert details["body"]["siteCode"] == "main"
        assert details["body"]["day"] == {"weekday": "MONDAY"}
        assert details["body"]["slots"] == [
            {
                "shippingMethod": "express",
                "capacity": 10,
                "deliveryTimeRange": {"timeFrom": "10:00", "timeTo": "12:00"},
            }
        ]
        assert result.state.identity.resource_id == "gen-1"

    async def test_update_puts_to_assigned_id(self, coordinator, gateway):
        gateway.assign_ids = True
        created = await coordinator.create("delivery_time", DELIVERY_TIME)
        slot = {**DELIVERY_TIME["slots"][0], "capacity": 20}

        await coordinator.update(created.state, {**DELIVERY_TIME, "slots": [slot]})

        (_, path, details), = gateway.calls_to("patch")
        assert path == "/shipping/acme/delivery-times/gen-1"
        assert details["method"] == "PUT"
        assert details["body"]["slots"][0]["capacity"] == 20

    async def test_name_is_immutable(self, coordinator, gateway):
        gateway.assign_ids = True
        created = await coordinator.create("delivery_time", DELIVERY_TIME)

        with pytest.raises(SchemaMismatch, match="name"):
            await coordinator.update(
                created.state, {**DELIVERY_TIME, "name": "tuesday-express"}
            )
        assert gateway.calls_to("patch") == []

    async def test_invalid_day_rejected_before_any_call(self, coordinator, gateway):
        desired = {
            **DELIVERY_TIME,
            "day": {"weekday": "MONDAY", "single_date": "2024-12-25T10:00:00.000Z"},
        }

        with pytest.raises(SchemaMismatch, match="set only one of"):
            await coordinator.create("delivery_time", desired)
        assert gateway.calls == []


class TestSchema:
    async def test_create_sends_language_headers(self, coordinator, gateway):
        result = await coordinator.create("schema", LOYALTY_SCHEMA)

        (_, path, details), = gateway.calls_to("create")
        assert path == "/schema/acme/schemas"
        assert details["headers"] == {"Content-Language": "*", "Accept-Language": "*"}
        nested = details["body"]["attributes"][0]["attributes"]
        assert nested == [{"key": "level", "name": {"en": "Level"}, "type": "NUMBER"}]
        assert result.state.version == 1

    async def test_read_takes_schema_url(self, coordinator, gateway):
        created = await coordinator.create("schema", LOYALTY_SCHEMA)
        gateway.resources["/schema/acme/schemas/loyalty"]["metadata"] = {
            "url": "https://schemas.example.com/loyalty_v1.json"
        }

        result = await coordinator.read(created.state)

        url = result.state.tree.get(("schema_url",)).node.value
        assert url == "https://schemas.example.com/loyalty_v1.json"
        assert coordinator.plan("schema", LOYALTY_SCHEMA, result.state).is_empty

    async def test_nested_attribute_change(self, coordinator, gateway):
        created = await coordinator.create("schema", LOYALTY_SCHEMA)
        tier = LOYALTY_SCHEMA["attributes"][0]
        level = {**tier["attributes"][0], "type": "DECIMAL"}
        desired = {**LOYALTY_SCHEMA, "attributes": [{**tier, "attributes": [level]}]}

        result = await coordinator.update(created.state, desired)

        assert result.report.patch_paths == ["attributes"]
        body = gateway.calls_to("patch")[0][2]["body"]
        assert body["attributes"][0]["attributes"][0]["type"] == "DECIMAL"


# ---------------------------------------------------------------------------
# Delete, read, import
# ---------------------------------------------------------------------------


class TestDelete:
    async def test_delete_removes_resource(self, coordinator, gateway):
        created = await coordinator.create("shipping_zone", ZONE, site="main")

        result = await coordinator.delete(created.state)

        assert result.state is None
        assert ZONE_PATH not in gateway.resources
        assert result.report.phases[-2:] == [P.APPLIED, P.LOCK_RELEASED]

    async def test_deactivate_policy_patches_instead(self, coordinator, gateway):
        gateway.seed(COUNTRY_PATH, {"code": "DE", "active": False}, version=3)
        adopted = await coordinator.create("country", {"code": "DE", "active": True})

        await coordinator.delete(adopted.state)

        assert gateway.calls_to("delete") == []
        assert gateway.calls_to("patch")[-1][2]["body"] == {"active": False}
        assert gateway.calls_to("patch")[-1][2]["version"] == 4
        assert gateway.resources[COUNTRY_PATH]["active"] is False

    async def test_missing_resource_is_not_found(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        del gateway.resources[SITE_PATH]

        with pytest.raises(NotFound):
            await coordinator.delete(created.state)


class TestReadAndImport:
    async def test_read_detects_drift(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        gateway.resources[SITE_PATH].pop("currency")
        gateway.resources[SITE_PATH]["defaultLanguage"] = "de"

        refreshed = await coordinator.read(created.state)

        assert refreshed.state.tree.get(("currency",)).is_unset
        # Untracked fields are not adopted on refresh
        assert refreshed.state.tree.get(("default_language",)).is_unset

        result = await coordinator.update(refreshed.state, SITE)
        assert gateway.calls_to("patch")[0][2]["body"] == {"currency": "EUR"}
        assert result.report.patch_paths == ["currency"]

    async def test_read_missing_resource(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        del gateway.resources[SITE_PATH]

        with pytest.raises(NotFound) as exc_info:
            await coordinator.read(created.state)

        assert exc_info.value.identity == created.state.identity

    async def test_read_retries_transient_failures(self, coordinator, gateway):
        created = await coordinator.create("site_settings", SITE)
        gateway.fail_next("read", Transient("timed out"), times=2)

        result = await coordinator.read(created.state)

        assert result.report.success
        assert len(gateway.calls_to("read")) == 3

    async def test_import_by_site_and_zone(self, coordinator, gateway):
        gateway.seed(
            ZONE_PATH,
            {"id": "eu", "name": {"en": "Europe"}, "shipTo": [{"country": "FR"}, {"country": "DE"}], "default": True},
            version=2,
        )

        result = await coordinator.import_state("shipping_zone", "main:eu")

        state = result.state
        assert state.identity.site == "main"
        assert state.identity.resource_id == "eu"
        assert state.version == 2
        assert state.tree.to_config() == {
            "id": "eu",
            "name": {"en": "Europe"},
            "default": True,
            "ship_to": [{"country": "DE"}, {"country": "FR"}],
        }
        assert P.LOCK_ACQUIRED in result.report.phases

    async def test_import_invalid_id(self, coordinator, gateway):
        with pytest.raises(InvalidImportId, match="Expected import ID in format 'site:zone_id'"):
            await coordinator.import_state("shipping_zone", "eu")
        assert gateway.calls == []

    async def test_imported_state_updates_cleanly(self, coordinator, gateway):
        gateway.seed(SITE_PATH, {"code": "main", "name": "Main site", "currency": "EUR", "active": True})
        imported = await coordinator.import_state("site_settings", "main")

        result = await coordinator.update(imported.state, SITE)

        assert result.patch.is_empty


# ---------------------------------------------------------------------------
# Tokens, deadlines and locking
# ---------------------------------------------------------------------------


class TestTokensAndDeadlines:
    async def test_authentication_failure_invalidates_token(
        self, coordinator, gateway, token_cache
    ):
        created = await coordinator.create("site_settings", SITE)
        gateway.fail_next("read", AuthenticationFailed("status 401"))

        with pytest.raises(AuthenticationFailed):
            await coordinator.read(created.state)
        assert token_cache.size == 0

        await coordinator.read(created.state)
        assert gateway.calls_to("read")[-1][2]["token"] == "token-2"

    async def test_token_shared_across_operations(self, coordinator, token_endpoint):
        await coordinator.create("site_settings", SITE)
        await coordinator.create("shipping_zone", ZONE, site="main")

        assert token_endpoint.calls == 1

    async def test_deadline_expiry_raises_cancelled(
        self, gateway, token_cache, catalog, credentials
    ):
        coordinator = make_coordinator(
            gateway, token_cache, catalog, credentials, deadline=0.05
        )
        await token_cache.get_token("acme", credentials)
        gateway.delay = 0.3

        with pytest.raises(Cancelled) as exc_info:
            await coordinator.create("shipping_zone", ZONE, site="main")

        report = exc_info.value.report
        assert P.FAILED in report.phases
        assert report.phases[-1] == P.LOCK_RELEASED
        assert not coordinator.locks.lock_for("shipping_zone:acme").locked()


class TestLockSerialization:
    async def test_same_tenant_mutations_serialized(
        self, gateway, token_cache, catalog, credentials
    ):
        locks = TenantMutexRegistry()
        first = make_coordinator(gateway, token_cache, catalog, credentials, locks)
        second = make_coordinator(gateway, token_cache, catalog, credentials, locks)
        assert first.locks is second.locks is locks
        gateway.delay = 0.05

        await asyncio.gather(
            first.create("shipping_zone", ZONE, site="main"),
            second.create("shipping_zone", {**ZONE, "id": "us"}, site="main"),
        )

        assert gateway.max_active == 1
        assert len(gateway.resources) == 2

    async def test_unlocked_kinds_run_concurrently(
        self, gateway, token_cache, catalog, credentials
    ):
        coordinator = make_coordinator(gateway, token_cache, catalog, credentials)
        await token_cache.get_token("acme", credentials)
        gateway.delay = 0.1

        await asyncio.gather(
            coordinator.create("site_settings", SITE),
            coordinator.create("site_settings", {**SITE, "code": "outlet"}),
        )

        assert gateway.max_active == 2


# ---------------------------------------------------------------------------
# Dry run and state serialisation
# ---------------------------------------------------------------------------


async def test_plan_makes_no_calls(coordinator, gateway, token_endpoint):
    created = await coordinator.create("site_settings", SITE)
    calls_before = len(gateway.calls)

    patch = coordinator.plan("site_settings", {**SITE, "currency": "USD"}, created.state)

    assert patch.to_body() == {"currency": "USD"}
    assert len(gateway.calls) == calls_before
    assert token_endpoint.calls == 1


def test_plan_for_create(coordinator):
    patch = coordinator.plan("site_settings", SITE)

    assert patch.paths() == ["code", "name", "active", "currency"]


async def test_state_to_dict(coordinator):
    created = await coordinator.create("shipping_zone", ZONE, site="main")

    data = created.state.to_dict()

    assert data["identity"] == {
        "kind": "shipping_zone",
        "tenant": "acme",
        "resource_id": "eu",
        "site": "main",
        "parent_id": None,
    }
    assert data["attributes"]["id"] == "eu"
    assert data["version"] == 1
