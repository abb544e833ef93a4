from __future__ import annotations

"""
Единая точка агрегации и подключения API-роутеров (v1).

- Реестр V1_ROUTERS: (name, APIRouter), префиксы роутеров относительные ('/coins', ...).
- Защита от двойного include при повторных вызовах mount_v1().

Использование в daswos.main:
    from daswos.api.routes import mount_v1
    mount_v1(app, base_prefix=settings.API_V1_STR)
"""

from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from daswos.api.v1 import coins, recommendations
from daswos.core.logging import get_logger

logger = get_logger(__name__)

V1_ROUTERS: List[Tuple[str, APIRouter]] = [
    ("coins", coins.router),
    ("recommendations", recommendations.router),
]


def _mounted_ids(app: FastAPI) -> set:
    if not hasattr(app.state, "_mounted_router_ids"):
        app.state._mounted_router_ids = set()
    return app.state._mounted_router_ids


def mount_v1(app: FastAPI, base_prefix: str = "/api/v1") -> List[str]:
    """Подключает все v1-роутеры под base_prefix; возвращает имена смонтированных."""
    mounted = _mounted_ids(app)
    names: List[str] = []
    for name, router in V1_ROUTERS:
        if id(router) in mounted:
            logger.debug("router_already_mounted", router=name)
            continue
        app.include_router(router, prefix=base_prefix.rstrip("/"))
        mounted.add(id(router))
        names.append(name)
        logger.info("router_mounted", router=name, prefix=base_prefix)
    return names


__all__ = ["V1_ROUTERS", "mount_v1"]
