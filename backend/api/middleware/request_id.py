"""
Request ID middleware - X-Request-ID for correlating logs, jobs and errors.

A caller-supplied X-Request-ID is kept when it looks sane, otherwise a
fresh UUID is generated. The ID lands on g.request_id and is echoed on
every response (including error envelopes).
"""

import re
import uuid
from flask import Flask, request, g

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def setup_request_id_middleware(app: Flask) -> None:

    @app.before_request
    def inject_request_id():
        incoming = request.headers.get('X-Request-ID', '')
        g.request_id = incoming if _SAFE_REQUEST_ID.match(incoming) else str(uuid.uuid4())

    @app.after_request
    def add_request_id_header(response):
        if hasattr(g, 'request_id'):
            response.headers['X-Request-ID'] = g.request_id
        return response
