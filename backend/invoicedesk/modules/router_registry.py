"""Central router registry for the API surface."""
from __future__ import annotations

from fastapi import FastAPI

from invoicedesk.routers.account import router as account_router
from invoicedesk.routers.attachments import router as attachments_router
from invoicedesk.routers.auth import router as auth_router
from invoicedesk.routers.customers import router as customers_router
from invoicedesk.routers.invoices import router as invoices_router
from invoicedesk.routers.public import router as public_router
from invoicedesk.routers.webhooks import router as webhooks_router

ALL_ROUTERS = (
    auth_router,
    account_router,
    customers_router,
    invoices_router,
    attachments_router,
    public_router,
    webhooks_router,
)


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
