import atexit
import logging
import os
import re
import secrets
import shutil
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from secrets import compare_digest
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    has_request_context,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFError, CSRFProtect
from werkzeug.security import check_password_hash

from .clock import SystemClock
from .downloads import dedupe_downloads, download_index, to_display_records
from .expiration_options import resolve_expiration_options
from .guest_links import (
    MAX_GUEST_LINK_LABEL_LENGTH,
    GuestLink,
    InvalidIdentifierError,
    format_count_limit,
    format_file_size,
    format_size_limit,
    is_active,
    new_guest_link_id,
    parse_entry_id,
    parse_guest_link_id,
)
from .lifetimes import (
    FILE_LIFETIME_INFINITE,
    LIFETIME_CATALOG,
    NEVER_EXPIRE,
    ExpirationTime,
    InvalidLifetimeError,
    Lifetime,
)
from .storage import (
    DATA_DIR,
    LOGS_DIR,
    EntryNotFoundError,
    GuestLinkNotFoundError,
    Settings,
    cleanup_expired_entries,
    delete_entry,
    delete_guest_link,
    ensure_directories,
    get_config_mtime,
    get_entries_metadata,
    get_entry_downloads,
    get_entry_metadata,
    get_guest_link,
    get_guest_links,
    get_storage_statistics,
    insert_guest_link,
    load_config,
    read_settings,
    update_entry,
    update_settings,
)

VERSION = "1.0.0"

_CONFIG_CACHE: Dict[str, Any] = load_config()
_CONFIG_CACHE_MTIME: float = get_config_mtime()
_config_lock = threading.RLock()

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3  # Number of log file backups to keep
BYTES_PER_MB = 1024 * 1024
MAX_FILENAME_LENGTH = 255
MAX_NOTE_LENGTH = 500

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL, logging.INFO)
logging.basicConfig(
    level=numeric_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f\n\r]")


def _load_secret_key() -> str:
    env_secret = os.environ.get("SECRET_KEY")
    if env_secret:
        return env_secret

    secret_path = DATA_DIR / ".secret_key"
    try:
        ensure_directories()
        try:
            # Exclusive creation so concurrent workers agree on one key.
            fd = os.open(secret_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            existing = secret_path.read_text(encoding="utf-8").strip()
            if existing:
                return existing
            fd = os.open(secret_path, os.O_WRONLY | os.O_TRUNC, 0o600)
        generated = secrets.token_hex(32)
        with os.fdopen(fd, "w", encoding="utf-8") as secret_file:
            secret_file.write(generated)
            secret_file.flush()
            os.fsync(secret_file.fileno())
        logging.getLogger("sharebox.config").warning(
            "Generated new secret key - stored in %s", secret_path
        )
        return generated
    except OSError as error:
        logging.getLogger("sharebox.config").critical(
            "SECURITY WARNING: Using in-memory secret key. Sessions will not persist across restarts. "
            "Set SECRET_KEY environment variable for production use. Error: %s",
            error,
        )
        return secrets.token_hex(32)


def sanitize_log_value(value: Any) -> Any:
    """Remove control characters from log values to prevent log injection."""

    if isinstance(value, str):
        escaped = value.replace("\n", "\\n").replace("\r", "\\r")
        return _CONTROL_CHAR_PATTERN.sub(
            lambda match: f"\\x{ord(match.group()):02x}", escaped
        )
    return value


class RequestAwareLogger:
    """Logger wrapper that injects request IDs into log messages."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _with_request(self, message: str) -> str:
        if has_request_context():
            request_id = getattr(g, "request_id", None)
            if request_id:
                return f"request_id={request_id} {message}"
        return message

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(self._with_request(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(self._with_request(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(self._with_request(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(self._with_request(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        self._logger.exception(self._with_request(msg), *args, **kwargs)

    def __getattr__(self, name: str):  # pragma: no cover - passthrough
        return getattr(self._logger, name)


def _configure_file_logging() -> Path:
    """Attach a rotating file handler for application and lifecycle logs."""

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_path = LOGS_DIR / "application.log"
    root_logger = logging.getLogger()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == str(log_path):
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)
            return log_path

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_path


APP_LOG_PATH = _configure_file_logging()


def _get_optional_bool_env(env_key: str) -> Optional[bool]:
    raw_value = os.environ.get(env_key)
    if raw_value is None:
        return None
    normalized = raw_value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return None


def get_config(refresh: bool = False) -> Dict[str, Any]:
    global _CONFIG_CACHE, _CONFIG_CACHE_MTIME
    with _config_lock:
        current_mtime = get_config_mtime()
        if not refresh and current_mtime > _CONFIG_CACHE_MTIME:
            refresh = True

        if refresh or _CONFIG_CACHE is None:
            _CONFIG_CACHE = load_config()
            _CONFIG_CACHE_MTIME = current_mtime

        if has_request_context():
            cached = getattr(g, "_app_config", None)
            if cached is None or refresh:
                g._app_config = _CONFIG_CACHE.copy()
            return g._app_config
        return _CONFIG_CACHE.copy()


def login_rate_limit_string() -> str:
    config = get_config()
    return f"{int(config.get('login_rate_limit_per_minute', 10))} per minute"


app = Flask(__name__)
app.config["SECRET_KEY"] = _load_secret_key()
app.config["SHAREBOX_CLOCK"] = SystemClock()
_session_cookie_secure_override = _get_optional_bool_env("SESSION_COOKIE_SECURE")
app.config["SESSION_COOKIE_SECURE"] = bool(_session_cookie_secure_override)
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
app.logger.setLevel(numeric_level)

csrf = CSRFProtect(app)

limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.environ.get("SHAREBOX_RATE_LIMIT_STORAGE", "memory://"),
)

_base_lifecycle_logger = logging.getLogger("sharebox.lifecycle")
_base_lifecycle_logger.setLevel(numeric_level)
lifecycle_logger = RequestAwareLogger(_base_lifecycle_logger)


def current_time() -> datetime:
    """Return "now" from the clock installed on the application."""

    return app.config["SHAREBOX_CLOCK"].now()


def ui_user_authenticated() -> bool:
    return bool(session.get("ui_authenticated"))


def require_ui_auth(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if ui_user_authenticated():
            return view(*args, **kwargs)

        next_target = request.full_path if request.query_string else request.path
        session["ui_next"] = (next_target or "/").rstrip("?")
        flash("Please log in to continue.", "info")
        return redirect(url_for("login"))

    return wrapped


@app.before_request
def add_request_id() -> None:
    """Assign a request identifier for downstream logging."""

    g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)


@app.after_request
def log_request_completion(response: Response):
    """Emit lifecycle logs for every completed request."""

    lifecycle_logger.info(
        "request_completed method=%s path=%s status=%d",
        request.method,
        sanitize_log_value(request.path),
        response.status_code,
    )
    return response


@app.after_request
def add_security_headers(response: Response):
    """Attach security-focused response headers."""

    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; img-src 'self' data:;"
    )
    return response


@app.after_request
def add_request_id_header(response: Response):
    """Expose the current request identifier to clients."""

    if hasattr(g, "request_id"):
        response.headers["X-Request-ID"] = g.request_id
    return response


@app.errorhandler(400)
@app.errorhandler(404)
@app.errorhandler(500)
def handle_http_error(error):
    code = getattr(error, "code", 500) or 500
    description = getattr(error, "description", None) or "Something went wrong"
    if request.accept_mimetypes.accept_json and not request.accept_mimetypes.accept_html:
        return jsonify({"error": description}), code
    return render_template("error.html", title=f"Error {code}", code=code, description=description), code


@app.errorhandler(429)
def handle_rate_limit(error):  # pragma: no cover - framework hook
    flash("Too many requests. Please try again later.", "error")
    return redirect(request.referrer or url_for("index")), 303


@app.errorhandler(CSRFError)
def handle_csrf_error(error):  # pragma: no cover - framework hook
    flash("Your session has expired or the form was invalid. Please try again.", "error")
    return redirect(request.referrer or url_for("index")), 303


@app.context_processor
def inject_ui_state():
    return {
        "ui_authenticated": ui_user_authenticated(),
        "ui_username": session.get("ui_username", ""),
    }


@app.template_filter("format_date")
def format_date(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


@app.template_filter("format_timestamp")
def format_timestamp(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


@app.template_filter("format_expiration")
def format_expiration(expiration: ExpirationTime) -> str:
    if expiration.is_never:
        return "Never"
    delta = expiration.instant - current_time()
    days = abs(delta.total_seconds()) / 86400
    suffix = " ago" if delta.total_seconds() < 0 else ""
    return f"{expiration.instant.strftime('%Y-%m-%d')} ({days:.0f} days{suffix})"


@app.template_filter("expiration_value")
def expiration_value(expiration: Optional[ExpirationTime]) -> str:
    if expiration is None:
        return ""
    if expiration.is_never:
        return "never"
    return expiration.isoformat()


app.add_template_filter(format_file_size, "format_file_size")
app.add_template_filter(format_size_limit, "format_size_limit")
app.add_template_filter(format_count_limit, "format_count_limit")
app.add_template_global(download_index, "download_index")


def _parse_id_or_abort(parser, raw: str) -> str:
    try:
        return parser(raw)
    except InvalidIdentifierError as error:
        lifecycle_logger.warning("invalid_identifier value=%s error=%s", sanitize_log_value(raw), error)
        abort(400, description=str(error))


def _load_entry_or_abort(entry_id: str):
    try:
        return get_entry_metadata(entry_id)
    except EntryNotFoundError:
        abort(404, description="Entry not found")
    except sqlite3.Error:
        lifecycle_logger.exception("entry_lookup_failed entry_id=%s", entry_id)
        abort(500, description="Failed to retrieve entry")


def _read_settings_or_abort() -> Settings:
    try:
        return read_settings()
    except (OSError, InvalidLifetimeError):
        lifecycle_logger.exception("settings_read_failed")
        abort(500, description="Failed to read settings")


@app.route("/")
def index():
    if ui_user_authenticated():
        return upload_page()
    return render_template("index.html", title="Sharebox")


@app.route("/upload")
@require_ui_auth
def upload_page():
    settings = _read_settings_or_abort()
    now = current_time()
    options = resolve_expiration_options(
        now, default_lifetime=settings.default_file_lifetime
    )
    return render_template(
        "upload.html",
        title="Upload",
        expiration_options=options,
        max_note_length=MAX_NOTE_LENGTH,
        guest_link=None,
    )


@app.route("/g/<guest_link_id>")
def guest_upload_page(guest_link_id: str):
    guest_link_id = _parse_id_or_abort(parse_guest_link_id, guest_link_id)
    try:
        link = get_guest_link(guest_link_id)
    except GuestLinkNotFoundError:
        abort(404, description="Invalid guest link ID")
    except sqlite3.Error:
        lifecycle_logger.exception("guest_link_lookup_failed guest_link_id=%s", guest_link_id)
        abort(500, description="Failed to retrieve guest link")

    now = current_time()
    if not is_active(link, now):
        lifecycle_logger.info("guest_link_inactive guest_link_id=%s", guest_link_id)
        return render_template("guest_link_inactive.html", title="Guest Link Inactive")

    options = resolve_expiration_options(now, upper_bound=link.max_file_lifetime)
    return render_template(
        "upload.html",
        title="Upload",
        expiration_options=options,
        max_note_length=MAX_NOTE_LENGTH,
        guest_link=link,
    )


@app.route("/guest-links")
@require_ui_auth
def guest_links_index():
    try:
        links = get_guest_links()
    except sqlite3.Error:
        lifecycle_logger.exception("guest_links_lookup_failed")
        abort(500, description="Failed to retrieve guest links")
    links.sort(key=lambda link: link.created, reverse=True)
    now = current_time()
    return render_template(
        "guest_links.html",
        title="Guest Links",
        guest_links=[(link, is_active(link, now)) for link in links],
    )


def _guest_link_form_options(now: datetime) -> Dict[str, Any]:
    link_expirations = [
        option
        for option in resolve_expiration_options(now, default_lifetime=FILE_LIFETIME_INFINITE)
        if not option.is_custom
    ]
    return {
        "expiration_choices": list(zip(LIFETIME_CATALOG, link_expirations)),
        "file_lifetime_options": LIFETIME_CATALOG,
        "default_file_lifetime": FILE_LIFETIME_INFINITE,
    }


def _parse_optional_positive_int(raw: Optional[str], field: str) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw)
    except ValueError as error:
        raise ValueError(f"{field} must be a whole number") from error
    if value < 1:
        raise ValueError(f"{field} must be at least 1")
    return value


@app.route("/guest-links/new", methods=["GET", "POST"])
@require_ui_auth
def guest_links_new():
    now = current_time()
    if request.method == "POST":
        label = (request.form.get("label") or "").strip()
        try:
            if len(label) > MAX_GUEST_LINK_LABEL_LENGTH:
                raise ValueError(
                    f"Label must be {MAX_GUEST_LINK_LABEL_LENGTH} characters or fewer"
                )
            link_lifetime = Lifetime.parse(request.form.get("expiration", "infinite"))
            max_file_lifetime = Lifetime.parse(request.form.get("max_file_lifetime", "infinite"))
            max_file_size_mb = _parse_optional_positive_int(
                request.form.get("max_file_size_mb"), "Maximum file size"
            )
            max_file_uploads = _parse_optional_positive_int(
                request.form.get("max_file_uploads"), "Maximum upload count"
            )
        except ValueError as error:
            flash(str(error), "error")
            return (
                render_template(
                    "guest_link_new.html",
                    title="New Guest Link",
                    **_guest_link_form_options(now),
                ),
                400,
            )

        link = GuestLink(
            id=new_guest_link_id(),
            label=label,
            created=now,
            expiration=link_lifetime.expiration_from(now),
            max_file_lifetime=max_file_lifetime,
            max_file_bytes=max_file_size_mb * BYTES_PER_MB if max_file_size_mb else None,
            max_file_uploads=max_file_uploads,
        )
        insert_guest_link(link)
        lifecycle_logger.info(
            "guest_link_created guest_link_id=%s label=%s",
            link.id,
            sanitize_log_value(label),
        )
        flash("Guest link created.", "success")
        return redirect(url_for("guest_links_index"))

    return render_template(
        "guest_link_new.html",
        title="New Guest Link",
        **_guest_link_form_options(now),
    )


@app.route("/guest-links/<guest_link_id>/delete", methods=["POST"])
@require_ui_auth
def guest_links_delete(guest_link_id: str):
    guest_link_id = _parse_id_or_abort(parse_guest_link_id, guest_link_id)
    try:
        delete_guest_link(guest_link_id)
    except GuestLinkNotFoundError:
        abort(404, description="Invalid guest link ID")
    flash("Guest link deleted.", "success")
    return redirect(url_for("guest_links_index"))


@app.route("/files")
@require_ui_auth
def files_index():
    try:
        entries = get_entries_metadata()
    except sqlite3.Error:
        lifecycle_logger.exception("entries_lookup_failed")
        abort(500, description="Failed to retrieve file index")
    entries.sort(key=lambda entry: entry.uploaded, reverse=True)
    return render_template("files.html", title="Files", files=entries)


@app.route("/files/<entry_id>/info")
@require_ui_auth
def file_info(entry_id: str):
    entry_id = _parse_id_or_abort(parse_entry_id, entry_id)
    metadata = _load_entry_or_abort(entry_id)
    try:
        downloads = get_entry_downloads(entry_id)
    except sqlite3.Error:
        lifecycle_logger.exception("downloads_lookup_failed entry_id=%s", entry_id)
        abort(500, description="Failed to retrieve downloads")
    return render_template(
        "file_info.html",
        title="File Information",
        metadata=metadata,
        download_count=len(downloads),
    )


@app.route("/files/<entry_id>/downloads")
@require_ui_auth
def file_downloads(entry_id: str):
    entry_id = _parse_id_or_abort(parse_entry_id, entry_id)
    metadata = _load_entry_or_abort(entry_id)
    try:
        downloads = get_entry_downloads(entry_id)
    except sqlite3.Error:
        lifecycle_logger.exception("downloads_lookup_failed entry_id=%s", entry_id)
        abort(500, description="Failed to retrieve downloads")

    show_unique_only = request.args.get("unique") == "true"
    if show_unique_only:
        downloads = dedupe_downloads(downloads)

    return render_template(
        "file_downloads.html",
        title="Downloads",
        metadata=metadata,
        downloads=to_display_records(downloads),
        show_unique_only=show_unique_only,
    )


def _parse_expiration_field(raw: Optional[str], never: bool, now: datetime) -> ExpirationTime:
    if never:
        return NEVER_EXPIRE
    if not raw:
        raise ValueError("Expiration date is required")
    try:
        moment = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError as error:
        raise ValueError("Expiration must be a valid date") from error
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    expiration = ExpirationTime(moment)
    if expiration.has_passed(now):
        raise ValueError("Expiration must be in the future")
    return expiration


@app.route("/files/<entry_id>/edit", methods=["GET", "POST"])
@require_ui_auth
def file_edit(entry_id: str):
    entry_id = _parse_id_or_abort(parse_entry_id, entry_id)
    metadata = _load_entry_or_abort(entry_id)

    if request.method == "POST":
        filename = (request.form.get("filename") or "").strip()
        note = (request.form.get("note") or "").strip()
        try:
            if not filename:
                raise ValueError("Filename cannot be empty")
            if len(filename) > MAX_FILENAME_LENGTH:
                raise ValueError(
                    f"Filename exceeds maximum length of {MAX_FILENAME_LENGTH} characters"
                )
            if len(note) > MAX_NOTE_LENGTH:
                raise ValueError(f"Note must be {MAX_NOTE_LENGTH} characters or fewer")
            expiration = _parse_expiration_field(
                request.form.get("expiration"),
                request.form.get("never_expire") == "on",
                current_time(),
            )
        except ValueError as error:
            flash(str(error), "error")
            return (
                render_template("file_edit.html", title="Edit", metadata=metadata),
                400,
            )

        update_entry(entry_id, filename=filename, note=note, expiration=expiration)
        lifecycle_logger.info("entry_edited entry_id=%s", entry_id)
        flash("File updated.", "success")
        return redirect(url_for("file_info", entry_id=entry_id))

    return render_template("file_edit.html", title="Edit", metadata=metadata)


@app.route("/files/<entry_id>/confirm-delete", methods=["GET", "POST"])
@require_ui_auth
def file_confirm_delete(entry_id: str):
    entry_id = _parse_id_or_abort(parse_entry_id, entry_id)
    metadata = _load_entry_or_abort(entry_id)

    if request.method == "POST":
        try:
            delete_entry(entry_id)
        except EntryNotFoundError:
            abort(404, description="Entry not found")
        lifecycle_logger.info(
            "entry_deleted_manual entry_id=%s ip=%s",
            entry_id,
            request.remote_addr or "unknown",
        )
        flash("File deleted.", "success")
        return redirect(url_for("files_index"))

    return render_template("file_delete.html", title="Delete", metadata=metadata)


def _settings_form_values(lifetime: Lifetime) -> Dict[str, Any]:
    if lifetime.is_infinite:
        return {"default_expiration": 30, "expiration_time_unit": "days", "default_never_expire": True}
    if lifetime.is_year_boundary:
        return {"default_expiration": lifetime.years, "expiration_time_unit": "years", "default_never_expire": False}
    return {"default_expiration": lifetime.days, "expiration_time_unit": "days", "default_never_expire": False}


def _parse_default_lifetime(form) -> Lifetime:
    if form.get("default_never_expire") == "on":
        return FILE_LIFETIME_INFINITE
    try:
        amount = int(form.get("default_expiration", ""))
    except ValueError as error:
        raise ValueError("Please provide a valid default expiration.") from error
    if amount < 1:
        raise ValueError("Default expiration must be at least 1.")
    unit = form.get("expiration_time_unit", "days")
    if unit == "years":
        return Lifetime.in_years(amount)
    if unit == "days":
        return Lifetime.in_days(amount)
    raise ValueError("Unsupported expiration unit.")


@app.route("/settings", methods=["GET", "POST"])
@require_ui_auth
def settings():
    if request.method == "POST":
        try:
            lifetime = _parse_default_lifetime(request.form)
        except ValueError as error:
            flash(str(error), "error")
            return redirect(url_for("settings"))

        try:
            update_settings(Settings(default_file_lifetime=lifetime))
        except OSError:
            lifecycle_logger.exception("settings_update_failed")
            abort(500, description="Failed to save settings")
        get_config(refresh=True)
        lifecycle_logger.info("settings_updated default_file_lifetime=%s", lifetime.to_json())
        flash("Settings updated.", "success")
        return redirect(url_for("settings"))

    current = _read_settings_or_abort()
    return render_template(
        "settings.html",
        title="Settings",
        **_settings_form_values(current.default_file_lifetime),
    )


@app.route("/information")
@require_ui_auth
def system_information():
    try:
        usage = shutil.disk_usage(DATA_DIR)
    except OSError:
        lifecycle_logger.exception("disk_usage_check_failed path=%s", DATA_DIR)
        abort(500, description="Failed to check available space")
    stats = get_storage_statistics(current_time())
    return render_template(
        "system_information.html",
        title="System Information",
        total_serving_bytes=stats["total_bytes"],
        database_file_bytes=stats["database_bytes"],
        used_bytes=usage.used,
        total_bytes=usage.total,
        used_percentage=f"{100.0 * usage.used / usage.total:.0f}%" if usage.total else "0%",
        version=VERSION,
    )


@app.route("/login", methods=["GET", "POST"])
@limiter.limit(lambda: login_rate_limit_string())
def login():
    config = get_config()
    if ui_user_authenticated():
        next_url = session.pop("ui_next", None)
        return redirect(next_url or url_for("index"))

    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        expected_username = config.get("ui_username", "admin")
        password_hash = config.get("ui_password_hash", "")

        if compare_digest(username, expected_username) and check_password_hash(
            password_hash, password
        ):
            old_next = session.get("ui_next")
            session.clear()
            session["ui_authenticated"] = True
            session["ui_username"] = expected_username
            lifecycle_logger.info("login_succeeded username=%s", sanitize_log_value(username))
            flash("Logged in successfully.", "success")
            return redirect(old_next or url_for("index"))

        lifecycle_logger.warning(
            "login_failed username=%s ip=%s",
            sanitize_log_value(username),
            request.remote_addr or "unknown",
        )
        flash("Invalid username or password.", "error")

    return render_template("login.html", title="Log in")


@app.route("/logout", methods=["POST"])
def logout():
    session.pop("ui_authenticated", None)
    session.pop("ui_username", None)
    flash("You have been logged out.", "success")
    return redirect(url_for("index"))


@app.route("/health")
def health_check():
    checks: Dict[str, Any] = {}
    healthy = True

    try:
        get_storage_statistics(current_time())
        checks["database"] = "ok"
    except sqlite3.Error as error:
        checks["database"] = f"error: {str(error)[:100]}"
        healthy = False

    try:
        read_settings()
        checks["settings"] = "ok"
    except (OSError, InvalidLifetimeError) as error:
        checks["settings"] = f"error: {str(error)[:100]}"
        healthy = False

    checks["scheduler_running"] = bool(scheduler is not None and scheduler.running)

    return jsonify(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": current_time().isoformat(),
            "checks": checks,
            "version": VERSION,
        }
    ), (200 if healthy else 503)


def _run_cleanup() -> None:
    cleanup_expired_entries(current_time())


scheduler: Optional[BackgroundScheduler] = None
if not _get_optional_bool_env("SHAREBOX_DISABLE_SCHEDULER"):
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        func=_run_cleanup,
        trigger="interval",
        minutes=max(1, int(_CONFIG_CACHE.get("cleanup_interval_minutes", 5))),
        id="cleanup_expired_entries",
        name="Clean up expired entries",
        replace_existing=True,
    )
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "4001")), debug=False)
