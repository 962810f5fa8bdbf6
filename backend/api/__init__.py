"""
API package - request-level plumbing shared by all blueprints.

- Global middleware (request_id, error_envelope)
- Request payload models live in schemas.requests
"""
