from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dojo.api.v1.automatic_discounts.router import router as automatic_discounts_router
from dojo.api.v1.discount_codes.router import router as discount_codes_router
from dojo.api.v1.discount_templates.router import router as discount_templates_router
from dojo.api.v1.invoices.router import router as invoices_router
from dojo.api.v1.tax_rates.router import router as tax_rates_router
from dojo.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Dojo Admin Backend")

    # CORS: allow the admin frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(tax_rates_router)
    app.include_router(discount_templates_router)
    app.include_router(discount_codes_router)
    app.include_router(automatic_discounts_router)
    app.include_router(invoices_router)

    return app


app = create_app()
