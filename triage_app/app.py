"""Flask server for the issue triage GitHub App.

Endpoints
---------
POST /api/github/webhook
    Receives GitHub webhook events.  ``issues.opened`` and ``issues.closed``
    are queued per installation and acknowledged with 202.
GET  /api/github/queues/<installation_id>
    Advisory queue depth for one installation.
GET  /healthz
    Health check.
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify, request as flask_request

from triage_app.auth import GitHubAppAuth
from triage_app.config import AppConfig, settings_accessor
from triage_app.dispatcher import BackgroundLoop, EventDispatcher
from triage_app.duplicate_detector import DuplicateDetector
from triage_app.embeddings import HttpEmbeddingProvider
from triage_app.errors import MalformedEventError
from triage_app.github_client import GitHubIssuesClient
from triage_app.idempotency import IdempotencyCoordinator
from triage_app.issue_closed import IssueOutcomeService
from triage_app.issue_opened import IssueTriageService
from triage_app.job_queue import PerTenantJobQueue
from triage_app.log_utils import sanitize_log
from triage_app.logging_config import setup_logging
from triage_app.store import SqliteIssueIndex, TriageStore
from triage_app.webhook_handler import route_event, verify_signature

log = logging.getLogger(__name__)


def build_dispatcher(config: AppConfig, auth: GitHubAppAuth) -> EventDispatcher:
    """Wire the production collaborators behind one dispatcher."""
    store = TriageStore(config.db_path)
    index = SqliteIssueIndex(config.db_path)
    settings = settings_accessor(config.triage_config_path)
    embedder = None
    if config.embedding_api_url:
        embedder = HttpEmbeddingProvider(
            config.embedding_api_url, config.embedding_api_key, config.embedding_model,
        )
    else:
        log.warning("EMBEDDING_API_URL not set; duplicate detection is disabled")

    triage = IssueTriageService(
        coordinator=IdempotencyCoordinator(store),
        detector=DuplicateDetector(index),
        comments_factory=lambda installation_id: GitHubIssuesClient(auth, installation_id),
        settings=settings,
        embedder=embedder,
        feedback_store=store,
        index=index,
    )
    outcomes = IssueOutcomeService(store, index=index, settings=settings)
    return EventDispatcher.for_services(PerTenantJobQueue(), triage, outcomes, BackgroundLoop())


def create_app(
    config: AppConfig | None = None,
    dispatcher: EventDispatcher | None = None,
    auth: GitHubAppAuth | None = None,
) -> Flask:
    if config is None:
        config = AppConfig.from_env()

    setup_logging("triage_app", config.log_level)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = config

    if auth is None:
        auth = GitHubAppAuth.from_key_file(
            config.app_id, config.private_key_path, config.github_api_base,
        )
    app.config["APP_AUTH"] = auth

    if dispatcher is None:
        dispatcher = build_dispatcher(config, auth)
    app.config["DISPATCHER"] = dispatcher

    @app.route("/healthz")
    def healthz():
        try:
            info = auth.get_app_info()
        except Exception as exc:
            log.error("Health check failed: %s", exc)
            return jsonify({"status": "error", "detail": str(exc)}), 503
        return jsonify({
            "status": "ok",
            "app_name": info.get("name", ""),
            "app_id": config.app_id,
            "active_installations": len(dispatcher.queue.active_tenants()),
        })

    @app.route("/api/github/webhook", methods=["POST"])
    def webhook():
        signature = flask_request.headers.get("X-Hub-Signature-256", "")
        if not verify_signature(
            flask_request.get_data(), signature, config.webhook_secret,
        ):
            return jsonify({"error": "Invalid signature"}), 401

        event_type = flask_request.headers.get("X-GitHub-Event", "")
        delivery_id = flask_request.headers.get("X-GitHub-Delivery", "")
        payload = flask_request.get_json(silent=True) or {}

        log.info(
            "Webhook: event=%s delivery=%s",
            sanitize_log(event_type), sanitize_log(delivery_id),
            extra={"delivery_id": delivery_id},
        )

        try:
            result = route_event(event_type, delivery_id, payload)
        except MalformedEventError as exc:
            log.warning("Rejected malformed %s delivery: %s", sanitize_log(event_type), exc,
                        extra={"delivery_id": delivery_id})
            return jsonify({"error": "Malformed event", "detail": str(exc)}), 400

        if result["status"] != "accepted":
            return jsonify(result)

        event = result["event"]
        dispatcher.submit(result["route"], event)
        return jsonify({
            "status": "queued",
            "route": result["route"],
            "delivery_id": delivery_id,
            "installation_id": event.installation_id,
        }), 202

    @app.route("/api/github/queues/<int:installation_id>")
    def queue_stats(installation_id: int):
        return jsonify(dispatcher.queue_stats(installation_id))

    return app
