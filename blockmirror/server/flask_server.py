#!/usr/bin/env python3
"""
BlockMirror Flask Server

Trigger surface for sync runs:
- /<secure path>/reactive: Google Calendar push-notification target
- /<secure path>/proactive: windowed run, e.g. from a daily scheduler
- /status: summary of the last run
"""

import json
import logging
import threading

from flask import Flask, abort, jsonify, request
from werkzeug.serving import WSGIRequestHandler

from blockmirror.config import ACCESS_TOKEN, FLASK_HOST, FLASK_PORT, SECURE_ENDPOINT_PATH
from blockmirror.core.property_store import LAST_RUN_KEY


def _request_token() -> str:
    return request.headers.get('X-Goog-Channel-Token') or request.args.get('token', '')


def create_app(service_factory=None, properties=None,
               endpoint_path: str = SECURE_ENDPOINT_PATH, access_token: str = ACCESS_TOKEN) -> Flask:
    from blockmirror.sync.block_sync_service import create_service, open_property_store

    # One property store (engine + pool) for the life of the app
    if properties is None:
        properties = open_property_store()
    service_factory = service_factory or (lambda: create_service(properties=properties))
    logger = logging.getLogger('blockmirror-server')
    run_lock = threading.Lock()

    app = Flask(__name__)

    def _run(mode: str):
        if _request_token() != access_token:
            abort(403, description="Invalid token")

        # Google sends a "sync" message when a watch channel is created
        if request.headers.get('X-Goog-Resource-State') == 'sync':
            return '', 200

        # Push notifications for several calendars arrive together; queue them
        with run_lock:
            try:
                service = service_factory()
                if mode == 'reactive':
                    results = service.run_reactive()
                else:
                    results = service.run_proactive()
            except Exception as e:
                logger.error(f"❌ {mode} run failed: {e}")
                return jsonify({'mode': mode, 'success': False, 'error': str(e)}), 500
        return jsonify(results)

    @app.route(f'/{endpoint_path}/reactive', methods=['GET', 'POST'])
    def reactive():
        return _run('reactive')

    @app.route(f'/{endpoint_path}/proactive', methods=['GET', 'POST'])
    def proactive():
        return _run('proactive')

    @app.route('/status')
    def status():
        """Status endpoint for monitoring."""
        raw = properties.get(LAST_RUN_KEY)
        last_run = json.loads(raw) if raw else {}

        return jsonify({
            'service': 'BlockMirror Sync Service',
            'status': 'active',
            'last_run': last_run,
        })

    @app.route('/')
    def index():
        """Return empty response for root path."""
        return ""

    return app


# Disable Flask request logging to reduce noise
class NoLoggingWSGIRequestHandler(WSGIRequestHandler):
    def log_request(self, *args, **kwargs):
        pass


def main():
    """Run the Flask server."""
    import argparse

    parser = argparse.ArgumentParser(description='BlockMirror Flask Server')
    parser.add_argument('--port', type=int, default=FLASK_PORT,
                        help=f'Port to run server on (default: {FLASK_PORT})')
    parser.add_argument('--host', default=FLASK_HOST,
                        help=f'Host to bind to (default: {FLASK_HOST})')
    parser.add_argument('--debug', action='store_true',
                        help='Run in debug mode')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if not args.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)

    print("🌐 Starting BlockMirror Flask Server...")
    print(f"Host: {args.host}:{args.port}")
    print(f"Status page: http://{args.host}:{args.port}/status")

    create_app().run(
        host=args.host,
        port=args.port,
        debug=args.debug,
        request_handler=NoLoggingWSGIRequestHandler if not args.debug else WSGIRequestHandler
    )


if __name__ == '__main__':
    main()
