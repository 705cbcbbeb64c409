"""
Ediens Backend — Middleware Package
=====================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Rate Limit] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: correlation id for logs, error bodies and response headers,
       including 429 responses
    2. Rate Limit: reject abusive clients before any work
    3. Logging: method, path, status and duration with the request id
"""
