"""
Admin API Package.

REST access to the credit risk and settlement engine.

Modules:
- schemas: Pydantic request/response models
- router: FastAPI endpoints under /risk-settlement
- main: Application factory

Usage:
    from admin_api.main import create_app
    app = create_app(container)
"""

from admin_api.main import create_app
from admin_api.router import register_error_handlers, router


__all__ = ["create_app", "register_error_handlers", "router"]
