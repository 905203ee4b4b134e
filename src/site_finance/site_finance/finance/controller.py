from __future__ import annotations

import io
import logging
from datetime import date, datetime
from functools import wraps
from typing import Any, Optional

from flask import Blueprint, Flask, jsonify, request, send_file, session

from ..common.datetime_utils import first_of_month, parse_iso_date
from ..core.exceptions import (
    AuthorizationError,
    DomainError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from .model import ActingUser, BulkResult, FinanceRecord, FinanceRecordInput, FinanceRevision
from .policy import days_remaining, expires_at, net_variation, variation_label
from .spreadsheet import (
    XLSX_MIMETYPE,
    build_template,
    export_filename,
    export_records,
    parse_import,
    template_filename,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    StoreUnavailableError: 503,
}

_INPUT_KEYS = {
    "record_id": ("record_id", "id"),
    "site_id": ("site_id", "siteId"),
    "site_name": ("site_name", "siteName"),
    "company_name": ("company_name", "companyName"),
    "billing_month": ("billing_month", "billingMonth"),
    "contract_amount": ("contract_amount", "contractAmount"),
    "contract_management_fee": ("contract_management_fee", "contractManagementFee"),
    "billed_amount": ("billed_amount", "billedAmount"),
    "billed_management_fee": ("billed_management_fee", "billedManagementFee"),
    "status": ("status",),
    "remarks": ("remarks",),
}


def _input_from_json(payload: dict) -> FinanceRecordInput:
    values: dict[str, Any] = {}
    for attr, keys in _INPUT_KEYS.items():
        values[attr] = next((payload[k] for k in keys if k in payload), None)
    return FinanceRecordInput(**values)


def _money(value) -> str:
    return f"{value:.2f}"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _record_json(record: FinanceRecord, *, role: str, policy, now: datetime) -> dict:
    net = net_variation(record)
    data = {
        "id": record.record_id,
        "site_id": record.site_id,
        "site_name": record.site_name,
        "company_name": record.company_name,
        "billing_month": record.billing_month.isoformat(),
        "contract_amount": _money(record.contract_amount),
        "contract_management_fee": _money(record.contract_management_fee),
        "billed_amount": _money(record.billed_amount),
        "billed_management_fee": _money(record.billed_management_fee),
        "total_billed_amount": _money(record.total_billed_amount),
        "net_variation": _money(net),
        "variation_label": variation_label(net),
        "status": record.status.value,
        "remarks": record.remarks,
        "revision_count": record.revision_count,
        "created_by": record.created_by,
        "created_by_name": record.created_by_name,
        "created_by_role": record.created_by_role,
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
        "state": record.state.value,
        "allowed_actions": policy.allowed_actions(role, record),
    }
    if record.is_deleted:
        data.update(
            {
                "deleted_at": _iso(record.deleted_at),
                "deleted_by": record.deleted_by,
                "deleted_by_name": record.deleted_by_name,
                "deleted_reason": record.deleted_reason,
                "expires_at": _iso(expires_at(record, retention_days=policy.retention_days)),
                "days_remaining": days_remaining(record, now, retention_days=policy.retention_days),
            }
        )
    return data


def _revision_json(rev: FinanceRevision) -> dict:
    return {
        "revision_number": rev.revision_number,
        "revised_by": rev.revised_by,
        "revised_by_name": rev.revised_by_name,
        "revised_at": _iso(rev.revised_at),
        "diff": rev.diff,
    }


def _bulk_response(result: BulkResult):
    body = {
        "success": result.ok,
        "message": result.summary_message(),
        "succeeded": len(result.succeeded),
        "failed": len(result.failed),
        "notes": list(result.notes),
        "items": [
            {
                "key": i.key,
                "id": i.record_id,
                "success": i.success,
                "error": i.error,
                "field": i.field,
                "message": i.message,
            }
            for i in result.items
        ],
    }
    return jsonify(body), (200 if result.ok else 207)


def register(app: Flask, container) -> None:
    bp = Blueprint("finance", __name__, url_prefix="/api/finance")
    finance = container.finance_service
    sites = container.site_service

    def login_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return jsonify({"success": False, "message": "Please log in to continue"}), 401
            return view(*args, **kwargs)

        return wrapper

    def _actor() -> ActingUser:
        return ActingUser(
            user_id=str(session["user_id"]),
            name=str(session.get("name") or ""),
            role=str(session.get("role") or ""),
        )

    def _month_arg(name: str = "month") -> date:
        raw = (request.args.get(name) or request.form.get(name) or "").strip()
        if not raw:
            return first_of_month(finance.now().date())
        try:
            return first_of_month(parse_iso_date(raw[:10]))
        except ValueError:
            raise ValidationError(f"{name} must be YYYY-MM-DD", field=name)

    def _json_body() -> dict:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError("Expected a JSON object body")
        return payload

    def _ids(payload: dict) -> list[str]:
        ids = payload.get("ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("ids must be a non-empty list", field="ids")
        return [str(i) for i in ids]

    @bp.errorhandler(DomainError)
    def handle_domain_error(e: DomainError):
        status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(e, cls)), 400)
        if status >= 500:
            logger.error("finance request failed: %s", e)
        body = {"success": False, "error": type(e).__name__, "message": str(e)}
        if getattr(e, "field", None):
            body["field"] = e.field
        if getattr(e, "record_id", None):
            body["id"] = e.record_id
        return jsonify(body), status

    @bp.route("/records", methods=["GET"])
    @login_required
    def list_records():
        actor = _actor()
        now = finance.now()
        records = finance.list_active(actor, billing_month=_month_arg(), search=request.args.get("q"))
        return jsonify(
            {
                "success": True,
                "records": [_record_json(r, role=actor.role, policy=finance.policy, now=now) for r in records],
            }
        )

    @bp.route("/records/deleted", methods=["GET"])
    @login_required
    def list_deleted_records():
        actor = _actor()
        now = finance.now()
        records = finance.list_deleted(actor, now=now)
        return jsonify(
            {
                "success": True,
                "retention_days": finance.policy.retention_days,
                "records": [_record_json(r, role=actor.role, policy=finance.policy, now=now) for r in records],
            }
        )

    @bp.route("/records/template", methods=["GET"])
    @login_required
    def new_record_template():
        data = finance.new_record_template(site_id=request.args.get("site_id", ""), billing_month=_month_arg())
        return jsonify(
            {
                "success": True,
                "record": {
                    "site_id": data.site_id,
                    "site_name": data.site_name,
                    "company_name": data.company_name,
                    "billing_month": data.billing_month.isoformat(),
                    "contract_amount": _money(data.contract_amount or 0),
                    "contract_management_fee": _money(data.contract_management_fee or 0),
                },
            }
        )

    @bp.route("/records", methods=["POST"])
    @login_required
    def save_record():
        actor = _actor()
        record = finance.save(actor, _input_from_json(_json_body()))
        return jsonify(
            {
                "success": True,
                "message": "Record saved",
                "record": _record_json(record, role=actor.role, policy=finance.policy, now=finance.now()),
            }
        )

    @bp.route("/records/bulk", methods=["POST"])
    @login_required
    def bulk_save_records():
        rows = _json_body().get("records")
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise ValidationError("records must be a list of objects", field="records")
        return _bulk_response(finance.bulk_save(_actor(), [_input_from_json(r) for r in rows]))

    @bp.route("/records/<record_id>", methods=["GET"])
    @login_required
    def get_record(record_id: str):
        actor = _actor()
        record = finance.get(actor, record_id)
        data = _record_json(record, role=actor.role, policy=finance.policy, now=finance.now())
        return jsonify({"success": True, "record": data})

    @bp.route("/records/<record_id>/delete", methods=["POST"])
    @login_required
    def soft_delete_record(record_id: str):
        reason = (request.get_json(silent=True) or {}).get("reason") or request.form.get("reason", "")
        finance.soft_delete(_actor(), record_id, reason)
        days = finance.policy.retention_days
        return jsonify({"success": True, "message": f"Record moved to Deletion Log (restorable for {days} days)"})

    @bp.route("/records/bulk-delete", methods=["POST"])
    @login_required
    def bulk_soft_delete_records():
        payload = _json_body()
        return _bulk_response(finance.bulk_soft_delete(_actor(), _ids(payload), payload.get("reason") or ""))

    @bp.route("/records/<record_id>/restore", methods=["POST"])
    @login_required
    def restore_record(record_id: str):
        finance.restore(_actor(), record_id)
        return jsonify({"success": True, "message": "Record restored successfully"})

    @bp.route("/records/bulk-restore", methods=["POST"])
    @login_required
    def bulk_restore_records():
        return _bulk_response(finance.bulk_restore(_actor(), _ids(_json_body())))

    @bp.route("/records/<record_id>/purge", methods=["POST"])
    @login_required
    def purge_record(record_id: str):
        finance.purge(_actor(), record_id)
        return jsonify({"success": True, "message": "Record permanently deleted"})

    @bp.route("/records/bulk-purge", methods=["POST"])
    @login_required
    def bulk_purge_records():
        return _bulk_response(finance.bulk_purge(_actor(), _ids(_json_body())))

    @bp.route("/records/<record_id>/revisions", methods=["GET"])
    @login_required
    def record_revisions(record_id: str):
        revisions = finance.list_revisions(_actor(), record_id)
        return jsonify({"success": True, "revisions": [_revision_json(r) for r in revisions]})

    @bp.route("/summary", methods=["GET"])
    @login_required
    def summary():
        s = finance.summary(_actor(), billing_month=_month_arg())
        return jsonify(
            {
                "success": True,
                "summary": {
                    "record_count": s.record_count,
                    "total_contract": _money(s.total_contract),
                    "total_billed": _money(s.total_billed),
                    "billing_variation": _money(s.billing_variation),
                    "fee_variation": _money(s.fee_variation),
                    "net_variation": _money(s.net_variation),
                    "profit_sites": s.profit_sites,
                    "loss_sites": s.loss_sites,
                },
            }
        )

    @bp.route("/template", methods=["GET"])
    @login_required
    def download_template():
        month = _month_arg()
        data = build_template(sites.get_site_invoice_defaults())
        return send_file(
            io.BytesIO(data),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=template_filename(month),
        )

    @bp.route("/import", methods=["POST"])
    @login_required
    def import_records():
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            raise ValidationError("Please choose an .xlsx file", field="file")
        rows = parse_import(upload.stream, billing_month=_month_arg(), defaults=sites.get_site_invoice_defaults())
        return _bulk_response(finance.import_rows(_actor(), rows))

    @bp.route("/export", methods=["GET"])
    @login_required
    def export():
        month = _month_arg()
        records = finance.list_active(_actor(), billing_month=month, search=request.args.get("q"))
        return send_file(
            io.BytesIO(export_records(records)),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=export_filename(month),
        )

    app.register_blueprint(bp)
