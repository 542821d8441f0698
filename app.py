"""
app.py
------
Soil Health Monitor — Flask REST API

Endpoints:
    GET    /health                 Liveness / readiness probe
    GET    /municipalities         Municipalities and their map centres
    POST   /derive                 Derive pH / fertility / point scale from temperature
    POST   /samples                Submit a soil sample                   (auth)
    GET    /samples                List samples (paginated, filterable)
    GET    /samples/<int:id>       One sample
    PATCH  /samples/<int:id>       Edit a sample's numeric fields         (owner)
    DELETE /samples/<int:id>       Delete a sample                        (owner)
    GET    /stats                  Dashboard summary statistics
    GET    /stats/trends           Monthly trend series
    GET    /map/markers            GeoJSON markers for the map view
    POST   /map/markers/sync       Reconcile a client's marker layer
    GET    /export                 CSV / Excel download                   (auth)
    GET    /session                Current session details                (auth)

Authentication:
    Authorization: Bearer <token>, tokens signed with SOILHEALTH_SECRET
    (mint one with `python -m services.session_service issue <user_id>`).

Startup:
    Development :  python app.py
    Production  :  gunicorn -w 4 -b 0.0.0.0:5000 "app:create_app()"

Environment variables (optional):
    SOILHEALTH_PORT           – listening port (default: 5000)
    SOILHEALTH_DEBUG          – set to "1" to enable Flask debug mode
    SOILHEALTH_SECRET         – token signing key; set it for multi-worker
                                deployments (a random per-process key is used
                                and a warning logged if unset)
    SOILHEALTH_DB_PATH        – SQLite file (default: database/soil_samples.db)
    SOILHEALTH_TOKEN_MAX_AGE  – token lifetime in seconds (default: 43200)
    SOILHEALTH_CORS_ORIGINS   – comma-separated allowed origins (default: *)
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from functools import wraps

from flask import Flask, Response, current_app, request, jsonify, g
from flask_cors import CORS

from dotenv import load_dotenv
load_dotenv()

from database.init_db import init_db, get_connection, DB_PATH
from services.derivation_service import derive_soil_parameters, parse_temperature
from services.errors import (AuthenticationError, SoilHealthError,
                             ValidationError)
from services.export_service import export_csv, export_xlsx
from services.inflight_guard import InFlightGuard
from services.marker_service import feature_collection, reconcile_markers
from services.repository import SoilSampleRepository
from services.sample_service import (DEFAULT_CENTER, MUNICIPALITIES,
                                     create_sample, delete_sample,
                                     normalise_municipality, update_sample)
from services.session_service import (SessionContext, bearer_token,
                                      log_auth_event, verify_token)
from services.stats_service import monthly_trends, summarize

# ─────────────────────────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────────────────────────


def create_app(overrides: dict | None = None) -> Flask:
    """Application factory. Called by gunicorn and tests."""
    app = Flask(__name__)
    app.json.sort_keys = False
    secret = os.getenv("SOILHEALTH_SECRET")
    app.config["SECRET_KEY"]     = secret or os.urandom(24).hex()
    app.config["DB_PATH"]        = os.getenv("SOILHEALTH_DB_PATH", DB_PATH)
    app.config["TOKEN_MAX_AGE"]  = int(os.getenv("SOILHEALTH_TOKEN_MAX_AGE", 43200))
    app.config["CORS_ORIGINS"]   = os.getenv("SOILHEALTH_CORS_ORIGINS", "*")
    if overrides:
        app.config.update(overrides)

    if not secret and not (overrides and "SECRET_KEY" in overrides):
        app.logger.warning(
            "SOILHEALTH_SECRET is not set; using a random per-process key. "
            "Tokens will not verify across workers or restarts."
        )

    # Initialise database tables at startup
    try:
        init_db(app.config["DB_PATH"])
    except Exception as exc:
        app.logger.critical("Database init failed: %s", exc)
        raise

    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",") if o.strip()]
    CORS(app, origins=origins or "*",
         methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"])

    app.extensions["inflight_guard"] = InFlightGuard()

    _register_routes(app)
    _register_error_handlers(app)

    return app


# ─────────────────────────────────────────────────────────────────────────────
# Request-scoped DB connection / repository / session
# ─────────────────────────────────────────────────────────────────────────────

def _get_db():
    """Return (and cache per request) a SQLite connection."""
    if "db" not in g:
        g.db = get_connection(current_app.config["DB_PATH"])
    return g.db


def _repo() -> SoilSampleRepository:
    return SoilSampleRepository(_get_db())


def _guard() -> InFlightGuard:
    return current_app.extensions["inflight_guard"]


def _current_session() -> SessionContext:
    """Authenticate the request and return its SessionContext (cached on g)."""
    if "session" not in g:
        token = bearer_token(request.headers.get("Authorization"))
        user_id, session_id, login_time = verify_token(
            current_app.config["SECRET_KEY"], token,
            current_app.config["TOKEN_MAX_AGE"],
        )
        session = SessionContext(session_id)
        g.session_unsubscribe = session.subscribe(log_auth_event)
        session.sign_in(user_id, login_time)
        g.session = session
    return g.session


# ─────────────────────────────────────────────────────────────────────────────
# Decorators / helpers
# ─────────────────────────────────────────────────────────────────────────────

def _require_json(f):
    """Decorator: reject requests whose Content-Type is not application/json."""
    @wraps(f)
    def _wrapper(*args, **kwargs):
        if not request.is_json:
            return _err("Request Content-Type must be application/json", 415)
        return f(*args, **kwargs)
    return _wrapper


def _require_auth(f):
    """Decorator: resolve the bearer token into g.session or answer 401."""
    @wraps(f)
    def _wrapper(*args, **kwargs):
        _current_session()
        return f(*args, **kwargs)
    return _wrapper


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise ValidationError("Request body is empty or not a JSON object")
    return data


def _err(message: str, code: int = 400, **extra):
    """Return a standardised JSON error response."""
    body = {
        "error":     message,
        "status":    code,
        "timestamp": _utcnow(),
    }
    body.update(extra)
    return jsonify(body), code


def _utcnow() -> str:
    """Return current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _int_arg(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(request.args.get(name, default))
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer", [name])
    return min(high, max(low, value))


def _municipality_arg() -> str | None:
    raw = request.args.get("municipality", "").strip()
    if not raw:
        return None
    slug = normalise_municipality(raw)
    if slug is None:
        raise ValidationError(f"Unknown municipality: {raw}", ["municipality"])
    return slug


# ─────────────────────────────────────────────────────────────────────────────
# Route registration
# ─────────────────────────────────────────────────────────────────────────────

def _register_routes(app: Flask) -> None:

    # Tear down DB connection and session after each request
    @app.teardown_appcontext
    def _teardown(exc=None):
        session = g.pop("session", None)
        if session is not None:
            session.sign_out()
            unsubscribe = g.pop("session_unsubscribe", None)
            if unsubscribe is not None:
                unsubscribe()
        db = g.pop("db", None)
        if db is not None:
            db.close()

    # =========================================================================
    # GET /health
    # =========================================================================
    @app.route("/health", methods=["GET"])
    def health():
        """
        Liveness + readiness probe.

        Returns 200 if the API is running and the database answers a query.
        Returns 503 otherwise.
        """
        body = {
            "status":    "running",
            "timestamp": _utcnow(),
            "db_path":   app.config["DB_PATH"],
        }
        try:
            _get_db().execute("SELECT 1").fetchone()
            body["db_ready"] = True
        except Exception as exc:
            app.logger.error("Health check DB query failed: %s", exc)
            body["db_ready"] = False
            return jsonify(body), 503

        return jsonify(body), 200

    # =========================================================================
    # GET /municipalities
    # =========================================================================
    @app.route("/municipalities", methods=["GET"])
    def municipalities():
        return jsonify({
            "municipalities": [
                {"municipality": slug, "name": info["name"],
                 "center": list(info["center"])}
                for slug, info in MUNICIPALITIES.items()
            ],
            "default_center": list(DEFAULT_CENTER),
        }), 200

    # =========================================================================
    # POST /derive
    # =========================================================================
    @app.route("/derive", methods=["POST"])
    @_require_json
    def derive():
        """
        Derive default soil parameters from {"temperature": <°C>}.
        Used by the data-entry form to pre-fill pH and fertility while typing.
        """
        data        = _json_body()
        temperature = parse_temperature(data.get("temperature"))
        return jsonify({"temperature": temperature,
                        **derive_soil_parameters(temperature)}), 200

    # =========================================================================
    # POST /samples
    # =========================================================================
    @app.route("/samples", methods=["POST"])
    @_require_auth
    @_require_json
    def create():
        """
        Submit a new soil sample.

        Expected JSON body fields:
            municipality, coordinates ([lng, lat]) or longitude + latitude,
            temperature                           – required
            location, phLevel (or pH), fertility,
            nitrogen, phosphorus, potassium       – optional

        Returns 201 with the stored sample.
        Returns 422 if required fields are missing or invalid.
        """
        data      = _json_body()
        repo      = _repo()
        sample_id = create_sample(repo, _guard(), g.session, data)
        return jsonify(repo.get(sample_id)), 201

    # =========================================================================
    # GET /samples
    # =========================================================================
    @app.route("/samples", methods=["GET"])
    def list_samples():
        """
        Return samples, newest first.

        Optional query parameters:
            municipality – 'sallapadan' | 'bucay' | 'lagangilang'
            search       – substring match on location
            mine         – '1' to list only the caller's samples (auth)
            page         – page number (1-based, default 1)
            per_page     – records per page (default 50, max 200)
        """
        municipality = _municipality_arg()
        search       = request.args.get("search", "").strip() or None
        page         = _int_arg("page", 1, 1, 10**6)
        per_page     = _int_arg("per_page", 50, 1, 200)

        owner_id = None
        if request.args.get("mine") == "1":
            owner_id = _current_session().user_id

        samples, total = _repo().list_page(
            municipality=municipality, search=search, owner_id=owner_id,
            page=page, per_page=per_page,
        )
        return jsonify({
            "samples":  samples,
            "total":    total,
            "page":     page,
            "per_page": per_page,
            "pages":    max(1, -(-total // per_page)),  # ceiling division
        }), 200

    # =========================================================================
    # GET /samples/<id>
    # =========================================================================
    @app.route("/samples/<int:sample_id>", methods=["GET"])
    def get_sample(sample_id: int):
        return jsonify(_repo().get(sample_id)), 200

    # =========================================================================
    # PATCH /samples/<id>
    # =========================================================================
    @app.route("/samples/<int:sample_id>", methods=["PATCH"])
    @_require_auth
    @_require_json
    def edit_sample(sample_id: int):
        """
        Edit numeric fields (temperature, phLevel, fertility, nitrogen,
        phosphorus, potassium). Only the submitting user may edit.

        Returns 200 with the updated sample, 403 for non-owners, 404 if
        missing, 409 if another change to the sample is in progress.
        """
        data    = _json_body()
        updated = update_sample(_repo(), _guard(), g.session, sample_id, data)
        return jsonify(updated), 200

    # =========================================================================
    # DELETE /samples/<id>
    # =========================================================================
    @app.route("/samples/<int:sample_id>", methods=["DELETE"])
    @_require_auth
    def remove_sample(sample_id: int):
        delete_sample(_repo(), _guard(), g.session, sample_id)
        return "", 204

    # =========================================================================
    # GET /stats
    # =========================================================================
    @app.route("/stats", methods=["GET"])
    def stats():
        """Summary cards, point-scale distribution and municipality comparison."""
        return jsonify(summarize(_repo().list_all())), 200

    # =========================================================================
    # GET /stats/trends
    # =========================================================================
    @app.route("/stats/trends", methods=["GET"])
    def trends():
        months = _int_arg("months", 6, 1, 24)
        return jsonify({
            "months": months,
            "trends": monthly_trends(_repo().list_all(_municipality_arg()), months),
        }), 200

    # =========================================================================
    # GET /map/markers
    # =========================================================================
    @app.route("/map/markers", methods=["GET"])
    def markers():
        return jsonify(feature_collection(_repo().list_all(_municipality_arg()))), 200

    # =========================================================================
    # POST /map/markers/sync
    # =========================================================================
    @app.route("/map/markers/sync", methods=["POST"])
    @_require_json
    def sync_markers():
        """
        Body: {"known": {"<sample id>": "<fingerprint>", ...}}
        Returns {"add": [...], "update": [...], "remove": [...]}.
        """
        data  = request.get_json(silent=True)
        known = data.get("known", {}) if isinstance(data, dict) else None
        if not isinstance(known, dict):
            raise ValidationError("'known' must be an object of id → fingerprint",
                                  ["known"])
        return jsonify(reconcile_markers(known, _repo().list_all())), 200

    # =========================================================================
    # GET /export
    # =========================================================================
    @app.route("/export", methods=["GET"])
    @_require_auth
    def export():
        """Download all samples as CSV (default) or Excel (?format=xlsx)."""
        fmt     = request.args.get("format", "csv").lower()
        records = _repo().list_all(_municipality_arg())
        stamp   = datetime.now(timezone.utc).strftime("%Y%m%d")

        if fmt == "csv":
            payload  = export_csv(records)
            mimetype = "text/csv"
        elif fmt == "xlsx":
            payload  = export_xlsx(records)
            mimetype = ("application/vnd.openxmlformats-officedocument"
                        ".spreadsheetml.sheet")
        else:
            raise ValidationError("'format' must be 'csv' or 'xlsx'", ["format"])

        app.logger.info("Export of %d samples as %s by %s",
                        len(records), fmt, g.session.user_id)
        return Response(
            payload,
            mimetype=mimetype,
            headers={"Content-Disposition":
                     f"attachment; filename=soil_samples_{stamp}.{fmt}"},
        )

    # =========================================================================
    # GET /session
    # =========================================================================
    @app.route("/session", methods=["GET"])
    @_require_auth
    def session_info():
        return jsonify(g.session.to_dict()), 200


# ─────────────────────────────────────────────────────────────────────────────
# Error handlers
# ─────────────────────────────────────────────────────────────────────────────

def _register_error_handlers(app: Flask) -> None:

    @app.errorhandler(SoilHealthError)
    def service_error(e: SoilHealthError):
        if e.status_code >= 500:
            app.logger.error("%s: %s", type(e).__name__, e.message)
        if isinstance(e, ValidationError) and e.fields:
            return _err(e.message, e.status_code, fields=e.fields)
        if isinstance(e, AuthenticationError):
            response, code = _err(e.message, e.status_code)
            response.headers["WWW-Authenticate"] = "Bearer"
            return response, code
        return _err(e.message, e.status_code)

    @app.errorhandler(404)
    def not_found(e):
        return _err("Route not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _err("Method not allowed", 405)

    @app.errorhandler(500)
    def internal_error(e):
        return _err("Internal server error", 500)


# ─────────────────────────────────────────────────────────────────────────────
# Entry point (development server)
# ─────────────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    port  = int(os.getenv("SOILHEALTH_PORT",  5000))
    debug = os.getenv("SOILHEALTH_DEBUG", "0") == "1"

    app = create_app()

    print(f"\n{'='*60}")
    print("  Soil Health Monitor API")
    print(f"  Running on http://0.0.0.0:{port}")
    print(f"  Debug mode : {debug}")
    print(f"  DB path    : {app.config['DB_PATH']}")
    print(f"{'='*60}\n")

    app.run(host="0.0.0.0", port=port, debug=debug)
