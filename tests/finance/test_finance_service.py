from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from src.site_finance.site_finance.core.constants import ADMIN_TIER_ROLES
from src.site_finance.site_finance.core.enums import FinanceStatus
from src.site_finance.site_finance.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from src.site_finance.site_finance.finance.model import ActingUser, FinanceRecordInput
from src.site_finance.site_finance.finance.policy import FinancePolicy, net_variation, variation_label
from src.site_finance.site_finance.finance.service import FinanceService
from src.site_finance.site_finance.sites.service import SiteDirectoryService
from tests.fakes import NOW, make_record


def _input(**overrides) -> FinanceRecordInput:
    values = dict(
        site_id="S1",
        site_name="Alpha Tower",
        billing_month="2026-03-01",
        contract_amount="100000",
        contract_management_fee="5000",
        billed_amount="110000",
        billed_management_fee="6000",
    )
    values.update(overrides)
    return FinanceRecordInput(**values)


@pytest.fixture
def service(finance_repo, sites_repo):
    return FinanceService(finance_repo, sites=SiteDirectoryService(sites_repo), clock=lambda: NOW)


def test_save_new_record_derives_total_and_stamps_creator(service, clerk):
    rec = service.save(clerk, _input())

    assert rec.total_billed_amount == Decimal("116000.00")
    assert rec.created_by == "u1"
    assert rec.created_by_name == "Uma"
    assert rec.created_by_role == "finance"
    assert rec.created_at == NOW
    assert rec.status == FinanceStatus.PENDING
    assert rec.company_name == "Alpha Co"
    assert rec.billing_month == date(2026, 3, 1)
    assert rec.revision_count == 0
    assert not rec.is_deleted


def test_blank_amounts_default_to_zero(service, clerk):
    rec = service.save(clerk, _input(billed_amount=None, billed_management_fee=""))
    assert rec.billed_amount == Decimal("0.00")
    assert rec.total_billed_amount == Decimal("0.00")


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"contract_amount": "-1"}, "contract_amount"),
        ({"billed_amount": "abc"}, "billed_amount"),
        ({"site_id": ""}, "site_id"),
        ({"site_name": "  "}, "site_name"),
        ({"site_id": "S404"}, "site_id"),
        ({"billing_month": "March"}, "billing_month"),
        ({"status": "archived"}, "status"),
    ],
)
def test_save_rejects_invalid_input(service, finance_repo, clerk, overrides, field):
    with pytest.raises(ValidationError) as exc:
        service.save(clerk, _input(**overrides))
    assert exc.value.field == field
    assert finance_repo.records == {}


def test_directory_site_name_wins(service, clerk):
    rec = service.save(clerk, _input(site_name="alpha tower (old name)"))
    assert rec.site_name == "Alpha Tower"


def test_delete_then_list_moves_record_to_deletion_log(service, finance_repo, clerk, admin):
    rec = service.save(clerk, _input())

    service.soft_delete(admin, rec.record_id, "Duplicate entry")

    assert service.list_active(admin, billing_month="2026-03-15") == []
    deleted = service.list_deleted(admin)
    assert [r.record_id for r in deleted] == [rec.record_id]
    row = deleted[0]
    assert row.deleted_at == NOW
    assert row.deleted_by == "admin-1"
    assert row.deleted_by_name == "Ada"
    assert row.deleted_reason == "Duplicate entry"


def test_soft_delete_requires_reason(service, finance_repo, clerk):
    rec = service.save(clerk, _input())

    with pytest.raises(ValidationError) as exc:
        service.soft_delete(clerk, rec.record_id, "   ")

    assert exc.value.field == "reason"
    assert not finance_repo.get(rec.record_id).is_deleted


def test_soft_delete_twice_is_not_found(service, clerk):
    rec = service.save(clerk, _input())
    service.soft_delete(clerk, rec.record_id, "wrong month")

    with pytest.raises(NotFoundError):
        service.soft_delete(clerk, rec.record_id, "again")


def test_restore_active_record_is_not_found(service, clerk, admin):
    rec = service.save(clerk, _input())

    with pytest.raises(NotFoundError):
        service.restore(admin, rec.record_id)


def test_delete_restore_round_trip_returns_identical_record(service, finance_repo, clerk, admin):
    rec = service.save(clerk, _input(remarks="March invoice"))

    service.soft_delete(admin, rec.record_id, "mistake", now=NOW + timedelta(hours=1))
    service.restore(admin, rec.record_id)

    assert finance_repo.get(rec.record_id) == rec


def test_restore_and_purge_need_admin_role(service, finance_repo, clerk):
    finance_repo.insert(make_record("r1", deleted_at=NOW))

    with pytest.raises(AuthorizationError):
        service.restore(clerk, "r1")
    with pytest.raises(AuthorizationError):
        service.purge(clerk, "r1")
    with pytest.raises(AuthorizationError):
        service.bulk_restore(clerk, ["r1"])
    assert finance_repo.get("r1").is_deleted


def test_admin_tier_policy_lets_hr_restore(finance_repo):
    policy = FinancePolicy(restore_roles=ADMIN_TIER_ROLES, view_all_roles=ADMIN_TIER_ROLES)
    service = FinanceService(finance_repo, policy=policy)
    finance_repo.insert(make_record("r1", deleted_at=NOW))

    service.restore(ActingUser(user_id="h1", name="Hana", role="hr"), "r1")

    assert not finance_repo.get("r1").is_deleted


def test_purge_works_from_either_state(service, finance_repo, admin):
    finance_repo.insert(make_record("active"))
    finance_repo.insert(make_record("gone", deleted_at=NOW))

    service.purge(admin, "active")
    service.purge(admin, "gone")

    assert finance_repo.records == {}
    with pytest.raises(NotFoundError):
        service.purge(admin, "gone")


def test_update_records_revision_diff(service, finance_repo, clerk):
    rec = service.save(clerk, _input())

    updated = service.save(clerk, _input(record_id=rec.record_id, billed_amount="120000"))

    assert updated.revision_count == 1
    assert updated.total_billed_amount == Decimal("126000.00")
    assert updated.created_at == rec.created_at
    revs = service.list_revisions(clerk, rec.record_id)
    assert len(revs) == 1
    assert revs[0].revision_number == 1
    assert revs[0].diff["billed_amount"] == {"old": "110000.00", "new": "120000.00"}
    assert revs[0].diff["total_billed_amount"] == {"old": "116000.00", "new": "126000.00"}
    assert "contract_amount" not in revs[0].diff


def test_unchanged_update_writes_no_revision(service, finance_repo, clerk):
    rec = service.save(clerk, _input())

    again = service.save(clerk, _input(record_id=rec.record_id))

    assert again == rec
    assert finance_repo.revisions == {}


def test_save_over_deleted_record_is_not_found(service, finance_repo, clerk):
    rec = service.save(clerk, _input())
    service.soft_delete(clerk, rec.record_id, "wrong site")

    with pytest.raises(NotFoundError):
        service.save(clerk, _input(record_id=rec.record_id, billed_amount="1"))
    assert finance_repo.get(rec.record_id).billed_amount == Decimal("110000.00")


def test_bulk_save_partial_failure_keeps_valid_rows(service, finance_repo, clerk):
    rows = [
        _input(),
        _input(site_id="S2", site_name="Beta Plaza", contract_amount="-5"),
        _input(site_id="S2", site_name="Beta Plaza", contract_amount="40000"),
    ]

    result = service.bulk_save(clerk, rows)

    assert not result.ok
    assert [i.key for i in result.succeeded] == ["row 1", "row 3"]
    failed = result.failed[0]
    assert failed.key == "row 2"
    assert failed.error == "ValidationError"
    assert failed.field == "contract_amount"
    assert result.summary_message() == "2 of 3 records saved; 1 failed - row 2: contract_amount cannot be negative"
    assert len(finance_repo.records) == 2


def test_bulk_save_store_failure_persists_nothing(service, finance_repo, clerk):
    finance_repo.fail_save_many = True

    result = service.bulk_save(clerk, [_input(), _input(site_id="S2", site_name="Beta Plaza")])

    assert len(result.failed) == 2
    assert {i.error for i in result.failed} == {"StoreUnavailableError"}
    assert finance_repo.records == {}


def test_bulk_soft_delete_reports_missing_ids(service, finance_repo, admin):
    finance_repo.insert(make_record("r1"))
    finance_repo.insert(make_record("r2"))

    result = service.bulk_soft_delete(admin, ["r1", "nope", "r2"], "closing month")

    assert [i.key for i in result.succeeded] == ["r1", "r2"]
    assert result.failed[0].key == "nope"
    assert result.failed[0].error == "NotFoundError"
    assert finance_repo.get("r1").deleted_reason == "closing month"
    assert finance_repo.get("r1").deleted_at == finance_repo.get("r2").deleted_at


def test_bulk_soft_delete_rejects_blank_reason_per_item(service, finance_repo, admin):
    finance_repo.insert(make_record("r1"))

    result = service.bulk_soft_delete(admin, ["r1"], "")

    assert result.failed[0].field == "reason"
    assert not finance_repo.get("r1").is_deleted


def test_bulk_restore_and_purge(service, finance_repo, admin):
    finance_repo.insert(make_record("r1", deleted_at=NOW))
    finance_repo.insert(make_record("r2", deleted_at=NOW))
    finance_repo.insert(make_record("r3"))

    restored = service.bulk_restore(admin, ["r1", "r3"])
    purged = service.bulk_purge(admin, ["r2", "r3"])

    assert restored.summary_message().startswith("1 of 2 records restored")
    assert purged.ok
    assert purged.summary_message() == "2 records permanently deleted"
    assert set(finance_repo.records) == {"r1"}


def test_bulk_purge_commits_each_id_independently(service, finance_repo, admin):
    for rid in ("r1", "r2", "r3"):
        finance_repo.insert(make_record(rid, deleted_at=NOW))
    finance_repo.fail_delete_ids.add("r2")

    result = service.bulk_purge(admin, ["r1", "r2", "r3"])

    assert [i.record_id for i in result.succeeded] == ["r1", "r3"]
    assert result.failed[0].record_id == "r2"
    assert result.failed[0].error == "StoreUnavailableError"
    assert set(finance_repo.records) == {"r2"}


def test_scoped_user_only_sees_own_records(service, finance_repo, clerk, admin):
    finance_repo.insert(make_record("mine", created_by="u1"))
    finance_repo.insert(make_record("theirs", created_by="u2"))
    finance_repo.insert(make_record("theirs-deleted", created_by="u2", deleted_at=NOW))

    assert [r.record_id for r in service.list_active(clerk, billing_month=date(2026, 3, 1))] == ["mine"]
    assert service.list_deleted(clerk) == []
    assert len(service.list_active(admin, billing_month=date(2026, 3, 1))) == 2
    with pytest.raises(NotFoundError):
        service.get(clerk, "theirs")
    with pytest.raises(NotFoundError):
        service.soft_delete(clerk, "theirs", "not mine")


def test_list_deleted_purges_expired_rows(service, finance_repo, admin):
    finance_repo.insert(make_record("fresh", deleted_at=NOW - timedelta(days=1)))
    finance_repo.insert(make_record("stale", deleted_at=NOW - timedelta(days=8)))

    rows = service.list_deleted(admin)

    assert [r.record_id for r in rows] == ["fresh"]
    assert "stale" not in finance_repo.records


def test_list_deleted_falls_back_when_refetch_fails(service, finance_repo, admin):
    finance_repo.insert(make_record("fresh", deleted_at=NOW - timedelta(days=1)))
    finance_repo.insert(make_record("stale", deleted_at=NOW - timedelta(days=8)))
    finance_repo.fail_list_deleted_after = 1

    rows = service.list_deleted(admin)

    assert [r.record_id for r in rows] == ["fresh"]


def test_list_deleted_store_failure_propagates(service, finance_repo, admin):
    finance_repo.fail_list_deleted_after = 0

    with pytest.raises(StoreUnavailableError):
        service.list_deleted(admin)


def test_search_filters_by_site_or_company(service, finance_repo, admin):
    finance_repo.insert(make_record("a"))
    finance_repo.insert(make_record("b", site_id="S2", site_name="Beta Plaza", company_name="Beta Ltd"))

    rows = service.list_active(admin, billing_month="2026-03-01", search="beta")

    assert [r.record_id for r in rows] == ["b"]


def test_summary_over_visible_active_records(service, finance_repo, admin):
    finance_repo.insert(make_record("a"))
    finance_repo.insert(make_record("b", deleted_at=NOW))

    s = service.summary(admin, billing_month="2026-03-01")

    assert s.record_count == 1
    assert s.net_variation == Decimal("11000.00")


def test_new_record_template_prefills_contract_terms(service):
    tpl = service.new_record_template(site_id="S2", billing_month="2026-04-17")

    assert tpl.site_name == "Beta Plaza"
    assert tpl.billing_month == date(2026, 4, 1)
    assert tpl.contract_amount == Decimal("40000.00")
    assert tpl.record_id is None
    with pytest.raises(ValidationError):
        service.new_record_template(site_id="S404", billing_month="2026-04-01")


def test_import_rows_syncs_contract_defaults(service, sites_repo, clerk):
    rows = [_input(site_id="S2", site_name="Beta Plaza", contract_amount="45000", contract_management_fee="2500")]

    result = service.import_rows(clerk, rows)

    assert result.ok
    synced = sites_repo.get_invoice_default("S2")
    assert synced.contract_amount == Decimal("45000.00")
    assert synced.contract_management_fee == Decimal("2500.00")


def test_import_rows_keeps_saved_records_when_default_sync_fails(service, finance_repo, sites_repo, clerk):
    sites_repo.fail_save_defaults = True
    rows = [_input(site_id="S2", site_name="Beta Plaza", contract_amount="45000", contract_management_fee="2500")]

    result = service.import_rows(clerk, rows)

    assert result.ok
    assert len(finance_repo.records) == 1
    assert result.notes == ["site invoice defaults not updated: database unavailable"]
    assert result.summary_message() == "1 record saved; site invoice defaults not updated: database unavailable"
    assert sites_repo.get_invoice_default("S2").contract_amount == Decimal("40000.00")


def test_import_rows_rejects_empty_file(service, clerk):
    with pytest.raises(ValidationError, match="No valid records"):
        service.import_rows(clerk, [])


def test_delete_then_list_keeps_net_variation_for_audit(service, clerk):
    rec = service.save(
        clerk,
        _input(
            contract_amount="40000",
            contract_management_fee="4000",
            billed_amount="50000",
            billed_management_fee="5000",
        ),
    )
    assert net_variation(rec) == Decimal("11000.00")

    service.soft_delete(clerk, rec.record_id, "duplicate entry")

    assert rec.record_id not in [r.record_id for r in service.list_active(clerk, billing_month="2026-03-01")]
    (row,) = service.list_deleted(clerk)
    assert row.deleted_reason == "duplicate entry"
    assert net_variation(row) == Decimal("11000.00")
    assert variation_label(net_variation(row)) == "Profit"


def test_deletion_group_is_all_or_nothing(service, finance_repo, clerk, admin):
    ids = [service.save(clerk, _input(remarks=str(i))).record_id for i in range(4)]
    service.bulk_soft_delete(admin, ids[:3], "month closed")
    service.restore(admin, ids[1])
    service.purge(admin, ids[2])

    for r in finance_repo.records.values():
        group = (r.deleted_at, r.deleted_by, r.deleted_by_name, r.deleted_reason)
        assert all(v is None for v in group) or all(v is not None for v in group)
    assert [r.record_id for r in service.list_deleted(admin)] == [ids[0]]
