"""
core/routes.py -- Route group registry.

A route group is a module exposing an APIRouter named `router`. Gateway
stages declare the groups they depend on at boot time (the session
authenticator needs the login routes it redirects to); the application then
imports and mounts whatever was declared. Modules are referenced by dotted
path and imported only when mounted, so declaring a dependency never triggers
route registration during import.

Layer rule: core/ is the kernel. The route modules are imported by name at
mount time only; nothing here imports api/ or web/ at module load.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import APIRouter

ROUTE_GROUPS: dict[str, str] = {
    "auth": "web.auth",
    "web": "web.routes",
    "api": "api.routes.v1.account",
}


def routes_path(group: str) -> str:
    """Return the dotted module path of a route group.

    Raises KeyError for an unknown group.
    """
    try:
        return ROUTE_GROUPS[group]
    except KeyError:
        raise KeyError(f"Unknown route group: {group!r}") from None


def load_router(module_path: str) -> APIRouter:
    """Import a route module and return its `router`."""
    return import_module(module_path).router
