import logging
import os
import re
import shutil
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional

from flask import (
    Flask,
    Response,
    g,
    has_request_context,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import HTTPException

from . import storage
from .api_docs import API_TITLE, build_openapi_document
from .settings import Settings, load_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3
_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f\n\r]")

CORS_ALLOW_HEADERS = "Content-Type,Authorization"
CORS_ALLOW_METHODS = "GET,POST,OPTIONS"


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


lifecycle_logger = RequestAwareLogger(logging.getLogger("pinshare.lifecycle"))


def _configure_logging(settings: Settings) -> Optional[Path]:
    """Set the root log level and attach a rotating file handler when asked to."""

    numeric_level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger("pinshare").setLevel(numeric_level)

    if settings.logs_dir is None:
        return None

    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = settings.logs_dir / "application.log"
    root_logger = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == os.path.abspath(log_path):
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


@contextmanager
def upload_stream_handler(file_storage: FileStorage) -> Iterator[FileStorage]:
    """Close the upload stream once the handler is done with it."""

    try:
        yield file_storage
    finally:
        try:
            file_storage.close()
        except OSError as error:
            lifecycle_logger.warning(
                "upload_stream_close_failed filename=%s error=%s",
                sanitize_log_value(file_storage.filename or ""),
                sanitize_log_value(str(error)),
            )


def _register_hooks(app: Flask, settings: Settings) -> None:
    @app.before_request
    def add_request_id() -> None:
        """Assign a request identifier for downstream logging."""

        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)

    @app.before_request
    def short_circuit_preflight() -> Optional[Response]:
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.after_request
    def add_cors_headers(response: Response):
        response.headers["Access-Control-Allow-Origin"] = settings.cors_origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        return response

    @app.after_request
    def add_security_headers(response: Response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.after_request
    def add_request_id_header(response: Response):
        """Expose the current request identifier to clients."""

        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.after_request
    def log_request_completion(response: Response):
        """Emit lifecycle logs for every completed request."""

        lifecycle_logger.info(
            "request_completed method=%s path=%s status=%d size=%s",
            request.method,
            sanitize_log_value(request.path),
            response.status_code,
            response.content_length or 0,
        )
        return response


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def handle_file_too_large(error):
        lifecycle_logger.warning(
            "upload_rejected_too_large path=%s", sanitize_log_value(request.path)
        )
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description or error.name}), error.code or 500

    @app.errorhandler(500)
    def handle_internal_error(error):  # pragma: no cover - framework hook
        lifecycle_logger.error(
            "unhandled_error path=%s error=%s",
            sanitize_log_value(request.path),
            sanitize_log_value(str(getattr(error, "original_exception", error))),
        )
        return jsonify({"error": "Internal server error"}), 500


def _register_file_routes(app: Flask, settings: Settings) -> None:
    root = settings.storage_path

    def invalid_pin_response(pin: str, operation: str):
        try:
            storage.validate_pin(pin, settings.enforce_pin_format)
        except storage.InvalidPinError as error:
            lifecycle_logger.warning(
                "%s_rejected_invalid_pin pin=%s", operation, sanitize_log_value(pin)
            )
            return jsonify({"error": str(error)}), 400
        return None

    @app.route("/api/files/<pin>", methods=["GET"])
    def list_files(pin: str):
        lifecycle_logger.info("files_list_requested pin=%s", sanitize_log_value(pin))
        rejected = invalid_pin_response(pin, "files_list")
        if rejected is not None:
            return rejected

        try:
            files = storage.list_pin_files(root, pin)
        except OSError as error:
            lifecycle_logger.error(
                "files_list_failed pin=%s error=%s",
                sanitize_log_value(pin),
                sanitize_log_value(str(error)),
            )
            return jsonify({"error": str(error)}), 500

        lifecycle_logger.info(
            "files_listed pin=%s count=%d", sanitize_log_value(pin), len(files)
        )
        return jsonify({"files": files}), 200

    @app.route("/api/files/<pin>", methods=["POST"])
    def upload_file(pin: str):
        lifecycle_logger.info("upload_requested pin=%s", sanitize_log_value(pin))
        rejected = invalid_pin_response(pin, "upload")
        if rejected is not None:
            return rejected

        try:
            storage.pin_directory(root, pin)
        except OSError as error:
            lifecycle_logger.error(
                "upload_directory_failed pin=%s error=%s",
                sanitize_log_value(pin),
                sanitize_log_value(str(error)),
            )
            return jsonify({"error": str(error)}), 500

        file_storage = request.files.get("file")
        if file_storage is None:
            lifecycle_logger.warning("upload_missing_file pin=%s", sanitize_log_value(pin))
            return jsonify({"error": "No file provided in form field 'file'"}), 400

        with upload_stream_handler(file_storage):
            try:
                stored_name = storage.save_upload(root, pin, file_storage)
            except storage.InvalidFilenameError as error:
                lifecycle_logger.warning(
                    "upload_invalid_filename pin=%s filename=%s",
                    sanitize_log_value(pin),
                    sanitize_log_value(file_storage.filename or ""),
                )
                return jsonify({"error": str(error)}), 400
            except OSError as error:
                lifecycle_logger.error(
                    "upload_save_failed pin=%s filename=%s error=%s",
                    sanitize_log_value(pin),
                    sanitize_log_value(file_storage.filename or ""),
                    sanitize_log_value(str(error)),
                )
                return jsonify({"error": str(error)}), 500

        lifecycle_logger.info(
            "file_uploaded pin=%s filename=%s",
            sanitize_log_value(pin),
            sanitize_log_value(stored_name),
        )
        return jsonify({"message": f"File {stored_name} uploaded successfully"}), 200

    @app.route("/api/files/<pin>/<filename>", methods=["GET"])
    def download_file(pin: str, filename: str):
        lifecycle_logger.info(
            "download_requested pin=%s filename=%s",
            sanitize_log_value(pin),
            sanitize_log_value(filename),
        )
        rejected = invalid_pin_response(pin, "download")
        if rejected is not None:
            return rejected

        file_path = storage.resolve_download(root, pin, filename)
        if file_path is None:
            lifecycle_logger.warning(
                "file_download_missing pin=%s filename=%s",
                sanitize_log_value(pin),
                sanitize_log_value(filename),
            )
            return jsonify({"error": "File not found"}), 404

        lifecycle_logger.info(
            "file_downloaded pin=%s filename=%s",
            sanitize_log_value(pin),
            sanitize_log_value(filename),
        )
        try:
            return send_file(
                file_path,
                mimetype="application/octet-stream",
                as_attachment=True,
                download_name=filename,
            )
        except FileNotFoundError:
            lifecycle_logger.warning(
                "file_download_missing_race pin=%s filename=%s",
                sanitize_log_value(pin),
                sanitize_log_value(filename),
            )
            return jsonify({"error": "File not found"}), 404


def _register_service_routes(app: Flask, settings: Settings) -> None:
    @app.route("/health")
    def health_check():
        checks = {}
        healthy = True

        try:
            storage.ensure_storage_root(settings.storage_path)
            usage = shutil.disk_usage(settings.storage_path)
            checks["disk_space_gb"] = round(usage.free / (1024 ** 3), 2)
        except OSError as error:
            checks["disk_space_gb"] = 0
            checks["storage_error"] = str(error)[:100]
            healthy = False

        try:
            probe_file = settings.storage_path / f".health_check_{uuid.uuid4().hex}"
            probe_file.write_text("health_check", encoding="utf-8")
            probe_file.unlink()
            checks["storage_writable"] = "ok"
        except OSError as error:
            checks["storage_writable"] = f"error: {str(error)[:100]}"
            healthy = False

        return jsonify(
            {
                "status": "healthy" if healthy else "unhealthy",
                "timestamp": time.time(),
                "checks": checks,
            }
        ), (200 if healthy else 503)

    @app.route("/api/swagger/")
    def swagger_root():
        return redirect(url_for("swagger_index"))

    @app.route("/api/swagger/index.html")
    def swagger_index():
        return render_template(
            "swagger.html",
            title=API_TITLE,
            doc_url=url_for("swagger_document"),
        )

    @app.route("/api/swagger/doc.json")
    def swagger_document():
        return jsonify(build_openapi_document(request.host_url))


def create_app(settings: Optional[Settings] = None) -> Flask:
    """Build the Flask application serving PIN-scoped file storage."""

    if settings is None:
        settings = load_settings()
    # send_file resolves relative paths against the package root, not the cwd.
    settings = replace(settings, storage_path=settings.storage_path.expanduser().resolve())

    log_path = _configure_logging(settings)
    app = Flask(__name__)
    app.config["PINSHARE_SETTINGS"] = settings
    app.config["MAX_CONTENT_LENGTH"] = settings.max_content_length

    lifecycle_logger.info("storage_path_configured path=%s", settings.storage_path)
    storage.ensure_storage_root(settings.storage_path)
    if log_path is not None:
        lifecycle_logger.info("file_logging_enabled path=%s", log_path)

    _register_hooks(app, settings)
    _register_error_handlers(app)
    _register_file_routes(app, settings)
    _register_service_routes(app, settings)
    return app


def main() -> None:
    settings = load_settings()
    app = create_app(settings)
    lifecycle_logger.info("server_starting host=%s port=%d", settings.host, settings.port)
    lifecycle_logger.info(
        "api_docs_available url=http://localhost:%d/api/swagger/index.html",
        settings.port,
    )
    app.run(host=settings.host, port=settings.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
