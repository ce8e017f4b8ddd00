"""Minimal Flask service exposing a reference ledger over HTTP.

Endpoints:
- POST /commit -> body {"payload": base64}; returns {"handle": ...}
- GET /confirm/<handle> -> {"status": "pending" | "committed" | "failed"}
- GET /entries -> committed entries in confirmation order
- POST /seal -> commit every pending entry; returns {"sealed": n}

`HttpAnchorClient` is the matching client.
"""

import base64
import binascii
import logging
from typing import Optional

from flask import Flask, jsonify, request

from .anchor import AnchorStatus, InMemoryLedger
from .errors import AnchorUnavailableError, DuplicateVoteError

logger = logging.getLogger(__name__)


def create_app(ledger: Optional[InMemoryLedger] = None) -> Flask:
    """Build a ledger service around `ledger` (a fresh one if omitted)."""
    app = Flask(__name__)
    ledger = ledger if ledger is not None else InMemoryLedger()
    app.extensions["ledger"] = ledger

    @app.errorhandler(AnchorUnavailableError)
    def unavailable(e):
        return jsonify({"error": str(e)}), 503

    @app.errorhandler(DuplicateVoteError)
    def duplicate(e):
        return jsonify({"error": str(e)}), 409

    @app.route("/commit", methods=["POST"])
    def commit():
        data = request.get_json(silent=True) or {}
        encoded = data.get("payload")
        if not isinstance(encoded, str):
            return jsonify({"error": "missing or invalid 'payload'"}), 400
        try:
            payload = base64.b64decode(encoded, validate=True)
        except binascii.Error:
            return jsonify({"error": "payload is not base64"}), 400
        handle = ledger.commit(payload)
        return jsonify({"handle": handle}), 201

    @app.route("/confirm/<handle>", methods=["GET"])
    def confirm(handle):
        status = ledger.confirm(handle)
        if status is AnchorStatus.FAILED and not ledger.knows(handle):
            return jsonify({"error": "unknown handle"}), 404
        return jsonify({"status": status.value})

    @app.route("/entries", methods=["GET"])
    def entries():
        return jsonify(
            {
                "entries": [
                    {
                        "handle": e.handle,
                        "payload": base64.b64encode(e.payload).decode("ascii"),
                        "sequence": e.sequence,
                        "confirmedAt": e.confirmed_at.isoformat(),
                    }
                    for e in ledger.entries()
                ]
            }
        )

    @app.route("/seal", methods=["POST"])
    def seal():
        return jsonify({"sealed": ledger.seal()})

    return app


if __name__ == "__main__":
    from . import config

    config.configure_logging()
    create_app().run(debug=True)
