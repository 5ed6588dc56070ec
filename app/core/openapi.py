"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Bearer JWT security scheme, required by operator and admin operations
- Tags metadata for each audience
- Public, search and health operations exempted from auth (``security: []``)

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

SECURITY_SCHEME_NAME = "BearerAuth"

# Path prefixes served without a token
UNAUTHENTICATED_PREFIXES = ("/health", "/v1/public")

TAGS_METADATA = (
    {"name": "Public", "description": "Routes, schedules and live bus positions. Tier PUBLIC."},
    {"name": "Search", "description": "Route search. Tier SEARCH."},
    {"name": "Operator", "description": "Fleet management for bus operators. Tier OPERATOR."},
    {"name": "Admin", "description": "Route administration and cache control. Tier ADMIN."},
    {"name": "Health", "description": "Liveness and dependency status. Not rate limited."},
)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            SECURITY_SCHEME_NAME,
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Provide a JWT via the Authorization: Bearer <token> header.",
            },
        )
        schema.setdefault("security", [{SECURITY_SCHEME_NAME: []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS_METADATA:
            if tag["name"] not in existing_tag_names:
                tags.append(dict(tag))

        for path, methods in schema.get("paths", {}).items():
            if path.startswith(UNAUTHENTICATED_PREFIXES):
                for method_obj in methods.values():
                    if isinstance(method_obj, dict):
                        method_obj["security"] = []

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
