"""
Main app entry point for the schedule-to-calendar HTTP service.
"""

from typing import Optional

from flask import Flask, Response, jsonify, request

from src.converter import DEFAULT_REPEAT_WEEKS, ConversionRequest, ImageUpload, convert
from src.errors import InvalidRequestError, ScheduleICSError
from src.image_llm_client import ImageLLMClient, get_llm_client
from src.logging_helper import Log
from src.settings_manager import SettingsSchema, load_settings


def _parse_repeat_weeks(value: Optional[str]) -> int:
    if value is None or value == "":
        return DEFAULT_REPEAT_WEEKS
    try:
        return int(value)
    except ValueError:
        raise InvalidRequestError("repeatWeeks must be a whole number") from None


def _read_request() -> ConversionRequest:
    images = [
        ImageUpload(
            filename=upload.filename or f"image-{index + 1}",
            data=upload.read(),
            mime_type=upload.mimetype or "image/png"
        )
        for index, upload in enumerate(request.files.getlist("images"))
    ]
    repeat_weekly = request.form.get("repeatWeekly", "").lower() == "true"
    return ConversionRequest(
        images=images,
        format=request.form.get("format"),
        repeat_weekly=repeat_weekly,
        repeat_weeks=_parse_repeat_weeks(request.form.get("repeatWeeks")) if repeat_weekly else DEFAULT_REPEAT_WEEKS
    )


def create_app(settings: Optional[SettingsSchema] = None, client: Optional[ImageLLMClient] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        settings: Loaded settings; read from the environment when omitted
        client: LLM client to use for every request; resolved from settings when omitted
    """
    if settings is None:
        settings = load_settings()

    app = Flask(__name__)
    app.config["SCHEDULE_ICS"] = settings

    @app.errorhandler(ScheduleICSError)
    def handle_pipeline_error(error: ScheduleICSError):
        Log.kv({"stage": "http", "status": error.status_code, "error": type(error).__name__})
        return jsonify({"error": str(error)}), error.status_code

    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    @app.post("/api/convert")
    def convert_schedule():
        Log.section("HTTP /api/convert")
        # Missing credentials fail before the request body is looked at.
        llm_client = client if client is not None else get_llm_client(settings)
        conversion = _read_request()

        try:
            result = convert(conversion, llm_client, max_workers=settings.get("max_workers", 4))
        except ScheduleICSError:
            raise
        except Exception as e:
            Log.error(f"Error processing schedule: {e!r}")
            return jsonify({
                "error": str(e) or "Failed to process schedule. Please ensure the images are clear "
                                   "and contain readable schedule information."
            }), 500

        return Response(
            result.ics,
            status=200,
            mimetype=result.content_type,
            headers={"Content-Disposition": f'attachment; filename="{result.filename}"'}
        )

    return app


def main():
    """Main entry point for the service."""
    Log.section("ScheduleICS")
    Log.info("Starting schedule-to-calendar service")
    log_path = Log.get_log_path()
    if log_path:
        Log.info(f"Log file: {log_path}")

    settings = load_settings()
    if not settings.get("openai_api_key") and not settings.get("use_stub"):
        Log.warn("OPENAI_API_KEY not set - conversions will fail until it is configured")

    app = create_app(settings)
    app.run(host=settings["host"], port=settings["port"])


if __name__ == "__main__":
    main()
