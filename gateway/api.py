"""
HTTP API.
Exposes the streaming gateway plus artifact and usage status endpoints.
"""

import logging

from flask import Flask, Response, jsonify, redirect, request, stream_with_context
from flask_cors import CORS

from shared.errors import FailureReason
from shared.models import MediaRequest
from .bootstrap import Services
from .streaming import ErrorResponse, RedirectResponse, StreamResponse, is_valid_media_id

logger = logging.getLogger(__name__)

EXPOSE_HEADERS = 'Content-Range, Content-Length, Accept-Ranges, Content-Disposition'


def _invalid_media_id():
    error = ErrorResponse(FailureReason.INVALID_MEDIA_ID, "Invalid media id")
    return jsonify(error.to_dict()), error.status


def create_app(services: Services) -> Flask:
    app = Flask(__name__)
    CORS(app, expose_headers=EXPOSE_HEADERS)
    app.config['SERVICES'] = services

    @app.route('/api/health')
    def health_check():
        return jsonify({"status": "ok"})

    @app.route('/api/status')
    def usage_status():
        try:
            return jsonify({"success": True, **services.status()})
        except Exception as e:
            logger.exception("Status lookup failed")
            return jsonify({"success": False, "error": str(e)}), 500

    @app.route('/api/artifacts/<media_id>', methods=['GET'])
    def get_artifact(media_id):
        if not is_valid_media_id(media_id):
            return _invalid_media_id()
        try:
            record = services.artifacts.lookup(media_id)
        except Exception as e:
            logger.exception(f"Artifact lookup failed for {media_id}")
            error = ErrorResponse(FailureReason.INTERNAL_ERROR, f"Internal error: {e}")
            return jsonify(error.to_dict()), error.status
        return jsonify({
            "success": True,
            "exists": record is not None,
            "artifact": record.to_dict() if record else None,
        })

    @app.route('/api/stream/<media_id>', methods=['GET'])
    def stream_audio(media_id):
        """Stream cached audio, converting and caching it on first request."""
        if not is_valid_media_id(media_id):
            return _invalid_media_id()

        media = MediaRequest.from_params(media_id, request.args)
        logger.info(f"Stream request for {media_id} ({media.safe_artist} - {media.safe_title})")
        result = services.gateway.handle(media)

        if isinstance(result, StreamResponse):
            response = Response(stream_with_context(result.body), status=result.status,
                                direct_passthrough=True)
            for name, value in result.headers.items():
                response.headers[name] = value
            if result.close is not None:
                response.call_on_close(result.close)
            return response

        if isinstance(result, RedirectResponse):
            logger.info(f"Redirecting {media_id} to provider link")
            response = redirect(result.location, code=result.status)
            response.headers['Cache-Control'] = 'no-store'
            return response

        logger.warning(f"Stream for {media_id} failed: {result.code}")
        return jsonify(result.to_dict()), result.status

    return app
