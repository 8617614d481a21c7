"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- The optional ``X-API-Key`` header used to identify clients for rate limiting
- Documented rate limit response headers on pipeline-backed operations

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA = [
    {
        "name": "Prices",
        "description": "Current and historical cryptocurrency prices.",
    },
    {
        "name": "Markets",
        "description": "Market overview and trending assets.",
    },
    {
        "name": "Metrics",
        "description": "Request pipeline performance metrics.",
    },
    {
        "name": "Health",
        "description": "Liveness checks.",
    },
]

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": {"description": "Requests allowed per window.", "schema": {"type": "integer"}},
    "X-RateLimit-Remaining": {"description": "Requests left in the current window.", "schema": {"type": "integer"}},
    "X-RateLimit-Reset": {"description": "Epoch seconds when the window resets.", "schema": {"type": "integer"}},
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and header docs.

    - Adds tags metadata if not present
    - Declares the ``X-API-Key`` identification scheme (not enforced)
    - Documents X-RateLimit-* headers and the 429 response on every ``/v1`` operation
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ClientKey",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Optional. Identifies the client for rate limiting; the client IP is used otherwise.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS_METADATA:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith("/v1/"):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                method_obj["security"] = [{}, {"ClientKey": []}]
                responses = method_obj.setdefault("responses", {})
                ok = responses.setdefault("200", {"description": "Successful Response"})
                ok.setdefault("headers", {}).update(_RATE_LIMIT_HEADERS)
                responses.setdefault(
                    "429",
                    {
                        "description": "Rate limit exceeded",
                        "headers": {
                            "Retry-After": {"description": "Seconds until the window resets.", "schema": {"type": "integer"}},
                        },
                    },
                )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
