"""
Accessibility Compliance Audit
Review queue blueprint.

Endpoints:
    GET  /api/v1/review-queue                  — open items, most urgent first
    GET  /api/v1/review-queue/stats            — dashboard counters
    GET  /api/v1/review-queue/<id>             — single item
    POST /api/v1/review-queue/<id>/assign      — {reviewer_id}
    POST /api/v1/review-queue/<id>/start       — {reviewer_id?}
    POST /api/v1/review-queue/<id>/clarify     — {reviewer_id?, notes}
    POST /api/v1/review-queue/<id>/decision    — reviewer decision, closes the item
"""

from flask import Blueprint, jsonify, request

from compliance_audit.blueprints import json_body, register_error_handlers
from compliance_audit.services import audit_trail_service as ats
from compliance_audit.services import review_queue_service as rqs

review_queue_bp = register_error_handlers(
    Blueprint("review_queue", __name__, url_prefix="/api/v1/review-queue")
)


@review_queue_bp.route("", methods=["GET"])
def list_queue():
    """
    Query params:
        review_status     — exact status (default: all open statuses)
        priority          — critical | high | medium | low
        wcag_criterion    — e.g. 1.4.3
        assigned_reviewer — reviewer id
    """
    filters = {key: request.args.get(key) for key in rqs.QUEUE_FILTERS}
    items = rqs.list_review_queue(filters)
    return jsonify({"items": items, "total": len(items)})


@review_queue_bp.route("/stats", methods=["GET"])
def queue_stats():
    return jsonify(rqs.get_review_queue_stats())


@review_queue_bp.route("/<int:item_id>", methods=["GET"])
def get_item(item_id):
    return jsonify(rqs.get_review_queue_item(item_id).to_dict())


@review_queue_bp.route("/<int:item_id>/assign", methods=["POST"])
def assign(item_id):
    data = json_body()
    item = rqs.assign_reviewer(item_id, data.get("reviewer_id"))
    return jsonify(item.to_dict())


@review_queue_bp.route("/<int:item_id>/start", methods=["POST"])
def start(item_id):
    data = json_body()
    item = rqs.start_review(item_id, data.get("reviewer_id"))
    return jsonify(item.to_dict())


@review_queue_bp.route("/<int:item_id>/clarify", methods=["POST"])
def clarify(item_id):
    data = json_body()
    item = rqs.request_clarification(item_id, data.get("reviewer_id"), data.get("notes"))
    return jsonify(item.to_dict())


@review_queue_bp.route("/<int:item_id>/decision", methods=["POST"])
def decide(item_id):
    """
    Body: {decision: accept|reject|modify, reviewer_id, notes?,
           confidence_level?, override_status?, additional_evidence?,
           evidence_files?}
    """
    result = ats.process_manual_review(item_id, json_body())
    return jsonify(result)
