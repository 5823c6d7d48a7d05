import uuid

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeSchemaProvider, make_data_source
from app.core.deploy.grouping import group_requests
from app.core.deploy.reconcile import (
    Reconciler,
    index_live_columns,
    match_live_columns,
    validate_request,
)
from app.core.deploy.schema_provider import LiveColumn
from app.core.schemas import ColumnDefinition, DeployDatasetRequest, DeployMode


def make_request(name, schema="public", data_source_name="ds_valid", columns=()):
    return DeployDatasetRequest(
        name=name,
        schema=schema,
        data_source_name=data_source_name,
        columns=[ColumnDefinition(name=c) for c in columns],
    )


ORDERS_LIVE = [
    LiveColumn("public", "orders", "id", "integer"),
    LiveColumn("public", "orders", "amount", "numeric"),
]


def test_matching_ignores_case_of_schema_and_table():
    """Schema 'Public' and table 'ORDERS' match live public.orders"""
    by_table = index_live_columns(ORDERS_LIVE)
    req = make_request("ORDERS", schema="Public")

    matched = match_live_columns(req, by_table)
    result = validate_request(req, matched, DeployMode.DEPLOY)

    assert result.success is True
    assert result.errors == []


def test_missing_table_is_table_not_found():
    result = validate_request(make_request("ghost"), [], DeployMode.DEPLOY)

    assert result.success is False
    assert len(result.errors) == 1
    assert result.errors[0].error_type == "table_not_found"
    assert result.errors[0].qualified_name == "public.ghost"


def test_validate_mode_reports_each_missing_column():
    """Only the absent column is reported, present ones are fine"""
    req = make_request("orders", columns=["id", "bogus_col", "AMOUNT"])

    result = validate_request(req, ORDERS_LIVE, DeployMode.VALIDATE)

    assert result.success is False
    assert [e.error_type for e in result.errors] == ["column_not_found"]
    assert result.errors[0].column_name == "bogus_col"


def test_validate_mode_accumulates_column_errors():
    req = make_request("orders", columns=["nope_1", "nope_2"])

    result = validate_request(req, ORDERS_LIVE, DeployMode.VALIDATE)

    assert [e.column_name for e in result.errors] == ["nope_1", "nope_2"]


def test_deploy_mode_does_not_check_columns():
    """Declared columns may be computed, deploy only needs the table"""
    req = make_request("orders", columns=["bogus_col"])

    result = validate_request(req, ORDERS_LIVE, DeployMode.DEPLOY)

    assert result.success is True


@pytest.mark.asyncio
async def test_one_batch_fetch_per_group(db_session, organization, data_source):
    """Three requests on one data source cost one credentials call and one batch call"""
    provider = FakeSchemaProvider()
    reconciler = Reconciler(provider, organization.id)
    [group] = group_requests(
        [make_request("orders"), make_request("customers"), make_request("ghost")]
    )

    outcome = await reconciler.reconcile_group(db_session, group)

    assert len(provider.credential_calls) == 1
    assert len(provider.batch_calls) == 1
    assert provider.batch_calls[0][0] == [
        ("orders", "public"),
        ("customers", "public"),
        ("ghost", "public"),
    ]
    assert [r.success for _, r in outcome.results] == [True, True, False]
    assert [item.request.name for item, _ in outcome.valid] == ["orders", "customers"]


@pytest.mark.asyncio
async def test_unknown_data_source_fails_whole_group(db_session, organization):
    provider = FakeSchemaProvider()
    reconciler = Reconciler(provider, organization.id)
    [group] = group_requests(
        [make_request("orders", data_source_name="ds_missing"),
         make_request("customers", data_source_name="ds_missing")]
    )

    outcome = await reconciler.reconcile_group(db_session, group)

    assert outcome.valid == []
    for _, result in outcome.results:
        assert result.success is False
        assert result.errors[0].error_type == "data_source_error"
        assert result.errors[0].message == "Data source 'ds_missing' not found"
    assert provider.batch_calls == []


@pytest.mark.asyncio
async def test_data_source_of_other_organization_is_invisible(db_session, organization):
    other_org = uuid.uuid4()
    reconciler = Reconciler(FakeSchemaProvider(), other_org)
    [group] = group_requests([make_request("orders")])
    await make_data_source(db_session, organization.id, "ds_valid")

    outcome = await reconciler.reconcile_group(db_session, group)

    assert outcome.results[0][1].errors[0].error_type == "data_source_error"


@pytest.mark.asyncio
async def test_credentials_failure_fails_whole_group(db_session, organization):
    await make_data_source(db_session, organization.id, "ds_locked", secret_id="locked")
    provider = FakeSchemaProvider(broken_secrets=("locked",))
    reconciler = Reconciler(provider, organization.id)
    [group] = group_requests(
        [make_request("orders", data_source_name="ds_locked"),
         make_request("customers", data_source_name="ds_locked")]
    )

    outcome = await reconciler.reconcile_group(db_session, group)

    messages = [r.errors[0].message for _, r in outcome.results]
    assert all(m.startswith("Failed to get data source credentials:") for m in messages)
    assert provider.batch_calls == []


@pytest.mark.asyncio
async def test_batch_fetch_failure_fails_whole_group(db_session, organization):
    await make_data_source(db_session, organization.id, "ds_down", secret_id="down")
    provider = FakeSchemaProvider(failing_secrets=("down",))
    reconciler = Reconciler(provider, organization.id)
    [group] = group_requests(
        [make_request("orders", data_source_name="ds_down"),
         make_request("customers", data_source_name="ds_down")]
    )

    outcome = await reconciler.reconcile_group(db_session, group)

    assert len(outcome.results) == 2
    for _, result in outcome.results:
        assert result.errors[0].message == (
            "Failed to get columns from data source: connection refused"
        )


@pytest.mark.asyncio
async def test_credentials_crash_fails_whole_group(db_session, organization, data_source):
    class CrashingProvider(FakeSchemaProvider):
        async def fetch_credentials(self, secret_ref, source_type):
            raise TimeoutError("secret store timed out")

    provider = CrashingProvider()
    reconciler = Reconciler(provider, organization.id)
    [group] = group_requests([make_request("orders"), make_request("customers")])

    outcome = await reconciler.reconcile_group(db_session, group)

    assert outcome.valid == []
    messages = [r.errors[0].message for _, r in outcome.results]
    assert messages == ["Failed to get data source credentials: secret store timed out"] * 2
    assert provider.batch_calls == []


@pytest.mark.asyncio
async def test_data_source_lookup_failure_fails_whole_group(organization):
    class BrokenSession:
        async def execute(self, query):
            raise OperationalError("SELECT data_sources", {}, Exception("database is locked"))

    reconciler = Reconciler(FakeSchemaProvider(), organization.id)
    [group] = group_requests([make_request("orders")])

    outcome = await reconciler.reconcile_group(BrokenSession(), group)

    [(_, result)] = outcome.results
    assert result.errors[0].error_type == "data_source_error"
    assert result.errors[0].message.startswith("Failed to get data source:")
