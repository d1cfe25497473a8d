"""HTTP entrypoint for the embedding worker (health, queue status, enqueue, resolve)."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from rekky.bootstrap import AppContext, build_context
from rekky.models import PRIORITIES, RECORD_KINDS
from rekky.services.identity import ServiceValidationError

logger = logging.getLogger(__name__)


def create_app(context: Optional[AppContext] = None) -> Flask:
    context = context or build_context()
    app = Flask(__name__)
    app.config["CONTEXT"] = context

    @app.get("/")
    def root() -> Any:
        """Simple root to avoid 404 on GET /"""
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        """Lightweight health endpoint; reads settings only, never the database."""
        return (
            jsonify(
                {
                    "status": "ok",
                    "worker_port_config": context.settings.worker_port,
                    "conflict_policy": context.settings.conflict_policy,
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.get("/embedding-queue/status")
    def queue_status() -> Any:
        return jsonify({"data": context.queue.get_status().to_dict()}), 200

    @app.post("/embeddings")
    def enqueue_embedding() -> Any:
        """
        Enqueue an embedding task for an already stored record.
        Required JSON fields: kind, record_id
        Optional: data (object), priority (high|normal|low)
        """
        payload: Dict[str, Any] = request.get_json(silent=True) or {}

        kind = payload.get("kind")
        record_id = payload.get("record_id")
        if kind not in RECORD_KINDS:
            return jsonify({"error": f"kind must be one of {', '.join(RECORD_KINDS)}"}), 400
        if record_id is None or isinstance(record_id, bool):
            return jsonify({"error": "record_id is required"}), 400
        try:
            record_id = int(record_id)
        except (TypeError, ValueError):
            return jsonify({"error": "record_id must be numeric"}), 400

        priority = payload.get("priority") or "normal"
        if priority not in PRIORITIES:
            return jsonify({"error": f"priority must be one of {', '.join(PRIORITIES)}"}), 400

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            return jsonify({"error": "data must be an object"}), 400

        task_id = context.queue.enqueue(kind, record_id, data, priority)
        return jsonify({"data": {"task_id": task_id}}), 202

    @app.post("/services/resolve")
    def resolve_service() -> Any:
        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        try:
            result = context.resolver.upsert_service(payload)
        except ServiceValidationError as exc:
            return jsonify({"error": str(exc), "details": exc.errors}), 400
        except Exception as exc:  # noqa: BLE001
            logger.exception("Service resolution failed: %s", exc)
            return jsonify({"error": "service resolution failed"}), 500
        return jsonify({"data": result.to_dict()}), 200

    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    context = build_context(recover=True)
    port = context.settings.worker_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    app = create_app(context)
    try:
        app.run(host="0.0.0.0", port=port)
    finally:
        context.close(wait=False)


if __name__ == "__main__":
    main()
