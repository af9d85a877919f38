#!/usr/bin/env python3
"""
Tracker Server
--------------
JSON API for the kanban project/task tracker, backed by SQLite (or by the
in-memory demo store).

Usage:
    python tracker_server.py                      # SQLite at ~/.local/share/tracker
    python tracker_server.py --demo               # in-memory demo board
    python tracker_server.py --config config.yaml --port 8080

Auth:
    X-API-Key: <api_secret>          service access
    Authorization: Basic <email:pw>  registered users (POST /api/auth/register)

API (all JSON, errors are {"error": "..."}):
    GET    /health
    POST   /api/auth/register             { email, password, name }
    GET    /api/users
    GET    /api/projects                  non-archived, newest first
    POST   /api/projects                  { name, description?, type? }
    GET    /api/projects/<id>             columns → tasks, ordered by position
    PUT    /api/projects/<id>             { name?, description?, type?, archived? }
    DELETE /api/projects/<id>
    POST   /api/projects/<id>/labels      { name, color? }
    POST   /api/tasks                     { title, column_id, ... } → appended to column
    PUT    /api/tasks                     { tasks: [{ id, column_id, position }] } batch reorder
    GET    /api/tasks/<id>
    PUT    /api/tasks/<id>
    DELETE /api/tasks/<id>
    POST   /api/tasks/<id>/labels         { label_id }
    DELETE /api/tasks/<id>/labels/<label_id>
    POST   /api/checklists                { title, task_id }
    PUT    /api/checklists/<id>           { title }
    DELETE /api/checklists/<id>
    POST   /api/checklist-items           { content, checklist_id }
    PUT    /api/checklist-items/<id>      { content?, completed? }
    DELETE /api/checklist-items/<id>
    POST   /api/comments                  { content, task_id }
    PUT    /api/comments/<id>             author only
    DELETE /api/comments/<id>             author only
    GET    /api/time-entries?task_id=<id>
    POST   /api/time-entries              { task_id, hours, description?, date? }
    PUT    /api/time-entries/<id>         owner only
    DELETE /api/time-entries/<id>         owner only
    POST   /api/attachments               multipart: file, task_id
    DELETE /api/attachments/<id>
    GET    /uploads/<name>
"""

import argparse
import logging
import sys
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException

from tracker.auth import Authenticator, ensure_user, hash_password
from tracker.config import Config
from tracker.errors import Forbidden, StorageFailure, TrackerError, ValidationError
from tracker.memory_store import DEMO_USER_ID, MemoryStore
from tracker.store import SQLiteStore
from tracker.uploads import UploadStore

api = Blueprint("api", __name__)


# ── Wiring ───────────────────────────────────────────────────────────────────

def build_store(cfg: Config):
    """Pick the storage backend named in the config."""
    if cfg.storage == "memory":
        return MemoryStore(cfg.demo_data_path or None, strict_positions=cfg.strict_positions)
    if cfg.storage == "sqlite":
        return SQLiteStore(cfg.db_path, strict_positions=cfg.strict_positions)
    raise ValueError(f"Unknown storage backend: {cfg.storage}")


def create_app(cfg: Config = None, store=None) -> Flask:
    """Build the Flask app around a store (built from ``cfg`` when not given)."""
    cfg = cfg or Config.load()
    store = store if store is not None else build_store(cfg)

    if cfg.api_secret:
        ensure_user(store, cfg.api_user_id, cfg.api_user_email, "API Service", role="admin")
    fallback_user = None
    if cfg.demo_mode and not cfg.api_secret:
        fallback_user = ensure_user(store, DEMO_USER_ID, "demo@example.com",
                                    "Demo User", role="admin").id

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = cfg.max_upload_mb * 1024 * 1024
    app.config["TRACKER_CONFIG"] = cfg
    app.config["TRACKER_STORE"] = store
    app.config["TRACKER_AUTH"] = Authenticator(
        store, api_secret=cfg.api_secret, api_user_id=cfg.api_user_id,
        fallback_user_id=fallback_user,
    )
    app.config["TRACKER_UPLOADS"] = UploadStore(cfg.uploads_dir)

    app.register_blueprint(api)
    app.register_error_handler(TrackerError, handle_tracker_error)
    app.register_error_handler(Exception, handle_unexpected_error)
    return app


def _store():
    return current_app.config["TRACKER_STORE"]


def _uploads() -> UploadStore:
    return current_app.config["TRACKER_UPLOADS"]


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _pick(data: dict, *keys) -> dict:
    """Only the keys actually present in the request body."""
    return {k: data[k] for k in keys if k in data}


def _success():
    return jsonify({"success": True})


def _remove_files(attachments):
    """Best-effort cleanup of files whose records are already gone."""
    for attachment in attachments:
        try:
            _uploads().delete(attachment.filepath)
        except StorageFailure as e:
            current_app.logger.warning(f"Orphaned upload {attachment.filepath}: {e}")


# ── Errors ───────────────────────────────────────────────────────────────────

def handle_tracker_error(e: TrackerError):
    if e.http_status >= 500:
        current_app.logger.error(f"{request.method} {request.path} failed: {e.message}")
    return jsonify({"error": e.message}), e.http_status


def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description}), e.code
    current_app.logger.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({"error": "Internal server error"}), 500


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_auth(f):
    """Decorator: resolve the caller into g.user or answer 401."""
    @wraps(f)
    def decorated(*args, **kwargs):
        g.user = current_app.config["TRACKER_AUTH"].authenticate(request)
        return f(*args, **kwargs)
    return decorated


@api.route("/api/auth/register", methods=["POST"])
def api_register():
    data = _body()
    email, password, name = data.get("email"), data.get("password"), data.get("name")
    if not email or not password or not name:
        raise ValidationError("Missing required fields")
    user = _store().create_user(email, name, password_hash=hash_password(password))
    current_app.logger.info(f"Registered user {user.email}")
    return jsonify({"user": user.to_dict()}), 201


@api.route("/api/users")
@require_auth
def api_users():
    return jsonify([u.summary() for u in _store().list_users()])


# ── Projects ─────────────────────────────────────────────────────────────────

@api.route("/api/projects", methods=["GET"])
@require_auth
def api_list_projects():
    return jsonify([p.to_dict() for p in _store().list_projects()])


@api.route("/api/projects", methods=["POST"])
@require_auth
def api_create_project():
    data = _body()
    if not data.get("name"):
        raise ValidationError("Project name is required")
    project = _store().create_project(
        g.user.id, data["name"], description=data.get("description"), type=data.get("type"),
    )
    return jsonify(project.to_dict()), 201


@api.route("/api/projects/<project_id>", methods=["GET"])
@require_auth
def api_get_project(project_id):
    return jsonify(_store().get_project(project_id).to_dict())


@api.route("/api/projects/<project_id>", methods=["PUT"])
@require_auth
def api_update_project(project_id):
    fields = _pick(_body(), "name", "description", "type", "archived")
    return jsonify(_store().update_project(project_id, **fields).to_dict())


@api.route("/api/projects/<project_id>", methods=["DELETE"])
@require_auth
def api_delete_project(project_id):
    _remove_files(_store().delete_project(project_id))
    return _success()


@api.route("/api/projects/<project_id>/labels", methods=["POST"])
@require_auth
def api_create_label(project_id):
    data = _body()
    label = _store().create_label(project_id, data.get("name"), data.get("color"))
    return jsonify(label.to_dict()), 201


# ── Tasks ────────────────────────────────────────────────────────────────────

@api.route("/api/tasks", methods=["POST"])
@require_auth
def api_create_task():
    data = _body()
    if not data.get("title") or not data.get("column_id"):
        raise ValidationError("Title and column are required")
    task = _store().create_task(
        data["column_id"],
        data["title"],
        description=data.get("description"),
        priority=data.get("priority"),
        due_date=data.get("due_date"),
        assignee_id=data.get("assignee_id"),
        estimated_hours=data.get("estimated_hours"),
    )
    return jsonify(task.to_dict()), 201


@api.route("/api/tasks", methods=["PUT"])
@require_auth
def api_reorder_tasks():
    """Persist the positions a drag-and-drop gesture produced, all or nothing."""
    tasks = _body().get("tasks")
    if not tasks or not isinstance(tasks, list):
        raise ValidationError("Tasks array is required")
    _store().reorder_tasks(tasks)
    return _success()


@api.route("/api/tasks/<task_id>", methods=["GET"])
@require_auth
def api_get_task(task_id):
    return jsonify(_store().get_task(task_id).to_dict())


@api.route("/api/tasks/<task_id>", methods=["PUT"])
@require_auth
def api_update_task(task_id):
    fields = _pick(_body(), "title", "description", "priority", "due_date",
                   "assignee_id", "estimated_hours")
    return jsonify(_store().update_task(task_id, **fields).to_dict())


@api.route("/api/tasks/<task_id>", methods=["DELETE"])
@require_auth
def api_delete_task(task_id):
    _remove_files(_store().delete_task(task_id))
    return _success()


@api.route("/api/tasks/<task_id>/labels", methods=["POST"])
@require_auth
def api_add_task_label(task_id):
    label_id = _body().get("label_id")
    if not label_id:
        raise ValidationError("label_id is required")
    _store().add_task_label(task_id, label_id)
    return _success()


@api.route("/api/tasks/<task_id>/labels/<label_id>", methods=["DELETE"])
@require_auth
def api_remove_task_label(task_id, label_id):
    _store().remove_task_label(task_id, label_id)
    return _success()


# ── Checklists ───────────────────────────────────────────────────────────────

@api.route("/api/checklists", methods=["POST"])
@require_auth
def api_create_checklist():
    data = _body()
    if not data.get("title") or not data.get("task_id"):
        raise ValidationError("Title and task_id are required")
    checklist = _store().create_checklist(data["task_id"], data["title"])
    return jsonify(checklist.to_dict()), 201


@api.route("/api/checklists/<checklist_id>", methods=["PUT"])
@require_auth
def api_update_checklist(checklist_id):
    checklist = _store().update_checklist(checklist_id, _body().get("title"))
    return jsonify(checklist.to_dict())


@api.route("/api/checklists/<checklist_id>", methods=["DELETE"])
@require_auth
def api_delete_checklist(checklist_id):
    _store().delete_checklist(checklist_id)
    return _success()


@api.route("/api/checklist-items", methods=["POST"])
@require_auth
def api_create_checklist_item():
    data = _body()
    if not data.get("content") or not data.get("checklist_id"):
        raise ValidationError("Content and checklist_id are required")
    item = _store().create_checklist_item(data["checklist_id"], data["content"])
    return jsonify(item.to_dict()), 201


@api.route("/api/checklist-items/<item_id>", methods=["PUT"])
@require_auth
def api_update_checklist_item(item_id):
    data = _body()
    item = _store().update_checklist_item(
        item_id, content=data.get("content"), completed=data.get("completed"),
    )
    return jsonify(item.to_dict())


@api.route("/api/checklist-items/<item_id>", methods=["DELETE"])
@require_auth
def api_delete_checklist_item(item_id):
    _store().delete_checklist_item(item_id)
    return _success()


# ── Comments ─────────────────────────────────────────────────────────────────

@api.route("/api/comments", methods=["POST"])
@require_auth
def api_create_comment():
    data = _body()
    if not data.get("content") or not data.get("task_id"):
        raise ValidationError("Content and task_id are required")
    comment = _store().create_comment(data["task_id"], g.user.id, data["content"])
    return jsonify(comment.to_dict()), 201


def _own_comment(comment_id):
    comment = _store().get_comment(comment_id)
    if comment.author_id != g.user.id:
        raise Forbidden()
    return comment


@api.route("/api/comments/<comment_id>", methods=["PUT"])
@require_auth
def api_update_comment(comment_id):
    _own_comment(comment_id)
    comment = _store().update_comment(comment_id, _body().get("content"))
    return jsonify(comment.to_dict())


@api.route("/api/comments/<comment_id>", methods=["DELETE"])
@require_auth
def api_delete_comment(comment_id):
    _own_comment(comment_id)
    _store().delete_comment(comment_id)
    return _success()


# ── Time entries ─────────────────────────────────────────────────────────────

@api.route("/api/time-entries", methods=["GET"])
@require_auth
def api_list_time_entries():
    task_id = request.args.get("task_id")
    if not task_id:
        raise ValidationError("task_id is required")
    return jsonify([e.to_dict() for e in _store().list_time_entries(task_id)])


@api.route("/api/time-entries", methods=["POST"])
@require_auth
def api_create_time_entry():
    data = _body()
    entry = _store().create_time_entry(
        data.get("task_id"), g.user.id, data.get("hours"),
        description=data.get("description"), date=data.get("date"),
    )
    return jsonify(entry.to_dict()), 201


def _own_time_entry(entry_id, action):
    entry = _store().get_time_entry(entry_id)
    if entry.user_id != g.user.id:
        raise Forbidden(f"You can only {action} your own time entries")
    return entry


@api.route("/api/time-entries/<entry_id>", methods=["PUT"])
@require_auth
def api_update_time_entry(entry_id):
    _own_time_entry(entry_id, "edit")
    fields = _pick(_body(), "hours", "description", "date")
    return jsonify(_store().update_time_entry(entry_id, **fields).to_dict())


@api.route("/api/time-entries/<entry_id>", methods=["DELETE"])
@require_auth
def api_delete_time_entry(entry_id):
    _own_time_entry(entry_id, "delete")
    _store().delete_time_entry(entry_id)
    return _success()


# ── Attachments ──────────────────────────────────────────────────────────────

@api.route("/api/attachments", methods=["POST"])
@require_auth
def api_upload_attachment():
    upload = request.files.get("file")
    task_id = request.form.get("task_id")
    if upload is None or not upload.filename or not task_id:
        raise ValidationError("File and task_id are required")

    _store().get_task(task_id)
    public_path, size = _uploads().save(upload)
    try:
        attachment = _store().create_attachment(
            task_id, upload.filename, public_path,
            mimetype=upload.mimetype or None, size=size,
        )
    except TrackerError:
        _uploads().delete(public_path)
        raise
    return jsonify(attachment.to_dict()), 201


@api.route("/api/attachments/<attachment_id>", methods=["DELETE"])
@require_auth
def api_delete_attachment(attachment_id):
    attachment = _store().get_attachment(attachment_id)
    _uploads().delete(attachment.filepath)
    _store().delete_attachment(attachment_id)
    current_app.logger.info(f"Deleted attachment {attachment_id} ({attachment.filename})")
    return _success()


@api.route("/uploads/<path:name>")
def serve_upload(name):
    return send_from_directory(_uploads().directory, name)


@api.route("/health")
def health():
    cfg = current_app.config["TRACKER_CONFIG"]
    return jsonify({
        "status": "ok",
        "storage": _store().backend,
        "demo": cfg.demo_mode,
        "strict_positions": cfg.strict_positions,
    })


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Tracker Server")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to tracker.db (overrides TRACKER_DB env var)")
    parser.add_argument("--demo", action="store_true",
                        help="Serve the in-memory demo board instead of SQLite")
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    if args.db:
        cfg.db_path = args.db
    if args.demo:
        cfg.storage = "memory"
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [tracker] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    app = create_app(cfg)
    where = cfg.db_path if cfg.storage == "sqlite" else (cfg.demo_data_path or "memory")

    print(f"""
╔═══════════════════════════════════════╗
║  Tracker Server                       ║
╠═══════════════════════════════════════╣
║  URL:     http://{cfg.host}:{cfg.port:<17}║
║  Storage: {cfg.storage:<28}║
║  Data:    {where:<28}║
╚═══════════════════════════════════════╝
""")

    app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
