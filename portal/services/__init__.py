"""
Business Logic Services Package.

Services talk to the REST backend through ``ApiClient`` and share the
single ``SessionManager`` built by the application entry-point.

The ``create_services()`` factory wires every service together,
returning a typed dict that the application layer (commands / views) can
consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from portal.api_client import ApiClient
from portal.auth import SessionManager
from portal.config import AppConfig
from portal.logger import get_logger
from portal.routing import Router
from portal.services.auth_service import AuthService
from portal.services.catalog import CatalogController
from portal.services.products_service import ProductsService


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    auth_service: AuthService
    products_service: ProductsService
    catalog_controller: CatalogController


def create_services(
    config: AppConfig,
    session: SessionManager,
    router: Router,
    api: ApiClient,
) -> ServiceContainer:
    """
    Wire all services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup and passes the
    returned dict to views / commands as needed.  The scheduled token
    refresh of ``session`` is routed to ``AuthService.refresh_session``.

    Args:
        config: Application configuration.
        session: The shared session store.
        router: Router used for post-logout navigation.
        api: REST client carrying the request guard.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    # ------------------------------------------------------------------
    # 1. Authentication
    # ------------------------------------------------------------------
    auth_service = AuthService(
        api=api,
        session=session,
        router=router,
        logger=get_logger("auth"),
        login_path=config.LOGIN_PATH,
    )
    session.set_refresh_handler(auth_service.refresh_session)

    # ------------------------------------------------------------------
    # 2. Product catalog
    # ------------------------------------------------------------------
    catalog_controller = CatalogController(
        logger=get_logger("catalog"),
        debounce_s=config.FILTER_DEBOUNCE_S,
        page_size=config.DEFAULT_PAGE_SIZE,
    )
    products_service = ProductsService(
        api=api,
        logger=get_logger("products"),
        catalog=catalog_controller,
        upcoming_days=config.UPCOMING_EXPIRATION_DAYS,
        latest_movements_limit=config.LATEST_MOVEMENTS_LIMIT,
    )

    return ServiceContainer(
        auth_service=auth_service,
        products_service=products_service,
        catalog_controller=catalog_controller,
    )
