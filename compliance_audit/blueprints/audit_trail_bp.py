"""
Accessibility Compliance Audit
Audit trail blueprint.

Endpoints:
    POST /api/v1/test-records                              — create a record (pending)
    GET  /api/v1/test-records/<id>                         — current status view
    POST /api/v1/test-records/<id>/automated-results       — ingest a scanner result
    GET  /api/v1/test-records/<id>/audit-trail             — full history, oldest first
"""

from flask import Blueprint, jsonify

from compliance_audit.blueprints import json_body, register_error_handlers
from compliance_audit.services import audit_trail_service as ats
from compliance_audit.utils.errors import E, api_error

audit_trail_bp = register_error_handlers(
    Blueprint("audit_trail", __name__, url_prefix="/api/v1")
)


@audit_trail_bp.route("/test-records", methods=["POST"])
def create_test_record():
    """Body: {wcag_criterion?, page_url?}"""
    record = ats.create_test_record(json_body())
    return jsonify(record.to_dict()), 201


@audit_trail_bp.route("/test-records/<int:record_id>", methods=["GET"])
def get_test_record(record_id):
    return jsonify(ats.get_test_record(record_id).to_dict())


@audit_trail_bp.route("/test-records/<int:record_id>/automated-results", methods=["POST"])
def post_automated_result(record_id):
    """
    Ingest one automated scanner result.

    Body: {raw_result: {tool_name, raw_results, violations_count?, id?, ...},
           wcag_criterion?}
    ``wcag_criterion`` defaults to the record's own criterion.
    """
    data = json_body()
    if "raw_result" not in data:
        return api_error(E.VALIDATION_REQUIRED, "raw_result is required")

    criterion = data.get("wcag_criterion") or ats.get_test_record(record_id).wcag_criterion
    if not criterion:
        return api_error(E.VALIDATION_REQUIRED, "wcag_criterion is required")

    result = ats.process_automated_result(record_id, data["raw_result"], str(criterion))
    return jsonify(result), 201


@audit_trail_bp.route("/test-records/<int:record_id>/audit-trail", methods=["GET"])
def get_audit_trail(record_id):
    entries = ats.get_audit_trail(record_id)
    return jsonify({
        "test_record_id": record_id,
        "entries": [entry.to_dict() for entry in entries],
        "total": len(entries),
        "chain_breaks": ats.verify_history_chain(record_id),
    })
