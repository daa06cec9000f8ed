from typing import Optional

from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, configure_logging, get_settings
from .errors import (
    AlreadyRevertedError,
    CashDrawerError,
    InsufficientFundsError,
    InsufficientPaymentError,
    NotFoundError,
    NotRevertibleError,
    StorageError,
)
from .models import (
    CashMovementRequest,
    DrawerBalance,
    LedgerEntry,
    PartyKind,
    PayoutSuggestion,
    PosInstance,
    Product,
    ProductRequest,
    RevertResponse,
    SaleRequest,
    SaleResponse,
)
from .service import DrawerService


def to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (AlreadyRevertedError, NotRevertibleError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, InsufficientPaymentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, InsufficientFundsError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, StorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ledger storage unavailable")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


def create_app(
    service: Optional[DrawerService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    drawer_service = service or DrawerService()

    app = FastAPI(
        title="Cash Drawer Ledger API",
        description="Append-only cash drawer ledger with sales, reversals and payout suggestions",
        version="1.0.0",
        root_path=settings.root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.drawer_service = drawer_service

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "cash-drawer-ledger"}

    @app.post("/instances", response_model=PosInstance, status_code=status.HTTP_201_CREATED, tags=["Instances"])
    def create_instance() -> PosInstance:
        return drawer_service.create_instance()

    @app.get("/instances/{instance_id}", response_model=PosInstance, tags=["Instances"])
    def get_instance(instance_id: str) -> PosInstance:
        try:
            return drawer_service.get_instance(instance_id)
        except CashDrawerError as e:
            raise to_http_error(e)

    @app.get("/instances/{instance_id}/products", response_model=list[Product], tags=["Products"])
    def list_products(instance_id: str) -> list[Product]:
        try:
            return drawer_service.list_products(instance_id)
        except CashDrawerError as e:
            raise to_http_error(e)

    @app.post(
        "/instances/{instance_id}/products",
        response_model=Product,
        status_code=status.HTTP_201_CREATED,
        tags=["Products"],
    )
    def create_product(instance_id: str, request: ProductRequest) -> Product:
        try:
            return drawer_service.create_product(
                instance_id, request.name, request.price, request.seller_name, request.display_order
            )
        except CashDrawerError as e:
            raise to_http_error(e)

    @app.put("/instances/{instance_id}/products/{product_id}", response_model=Product, tags=["Products"])
    def update_product(instance_id: str, product_id: int, request: ProductRequest) -> Product:
        try:
            return drawer_service.update_product(
                instance_id, product_id, request.name, request.price, request.seller_name, request.display_order
            )
        except CashDrawerError as e:
            raise to_http_error(e)

    @app.delete(
        "/instances/{instance_id}/products/{product_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Products"],
    )
    def delete_product(instance_id: str, product_id: int) -> Response:
        try:
            drawer_service.delete_product(instance_id, product_id)
        except CashDrawerError as e:
            raise to_http_error(e)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/instances/{instance_id}/ledger", response_model=list[LedgerEntry], tags=["Ledger"])
    def list_ledger(instance_id: str, newest_first: bool = False) -> list[LedgerEntry]:
        try:
            entries = drawer_service.list_entries(instance_id)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)
        return list(reversed(entries)) if newest_first else entries

    @app.post(
        "/instances/{instance_id}/deposits",
        response_model=LedgerEntry,
        status_code=status.HTTP_201_CREATED,
        tags=["Ledger"],
    )
    def record_deposit(instance_id: str, request: CashMovementRequest) -> LedgerEntry:
        try:
            return drawer_service.record_deposit(instance_id, request.person, request.amount)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    @app.post(
        "/instances/{instance_id}/withdrawals",
        response_model=LedgerEntry,
        status_code=status.HTTP_201_CREATED,
        tags=["Ledger"],
    )
    def record_withdrawal(instance_id: str, request: CashMovementRequest) -> LedgerEntry:
        try:
            return drawer_service.record_withdrawal(instance_id, request.person, request.amount)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    @app.post(
        "/instances/{instance_id}/sales",
        response_model=SaleResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Sales"],
    )
    def finalize_sale(instance_id: str, request: SaleRequest) -> SaleResponse:
        try:
            cart = drawer_service.resolve_cart(instance_id, request.product_ids)
            return drawer_service.finalize_sale(instance_id, cart, request.paid_amount, request.total_price)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    @app.post(
        "/ledger/{entry_id}/revert",
        response_model=RevertResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Ledger"],
    )
    def revert_entry(entry_id: int) -> RevertResponse:
        try:
            return drawer_service.revert(entry_id)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    @app.get("/instances/{instance_id}/drawer", response_model=DrawerBalance, tags=["Drawer"])
    def get_drawer_balance(instance_id: str) -> DrawerBalance:
        try:
            return drawer_service.get_balance(instance_id)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    @app.get(
        "/instances/{instance_id}/payouts/{party_kind}/{party_name}",
        response_model=PayoutSuggestion,
        tags=["Drawer"],
    )
    def suggest_payout(instance_id: str, party_kind: PartyKind, party_name: str) -> PayoutSuggestion:
        try:
            return drawer_service.suggest_payout(instance_id, party_kind, party_name)
        except (CashDrawerError, StorageError) as e:
            raise to_http_error(e)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
