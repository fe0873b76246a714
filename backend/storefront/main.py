"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the storefront backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and map results to DTOs and status codes.

Endpoints implemented:
- POST /api/account/register, POST /api/account/login
- GET /api/products, GET /api/products/{id}
- GET /api/basket, POST /api/basket/items,
  PUT /api/basket/items/{ordered_product_id}, POST /api/basket/checkout
- /api/moderator/...: orders list/get, product get/create/update/delete,
  photo add/set-main/delete (moderator policy)
"""

from typing import Annotated, List, Optional
from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Form, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import models, services
from .auth import get_current_user, require_moderator
from .basket import BasketChangeNotifier, SideBasketList
from .config import settings
from .repositories import UnitOfWork
from .schemas import (
    AdminOrderDto,
    BasketItemIn,
    BasketQuantityIn,
    ProductDto,
    ProductIn,
    ProductPhotoDto,
    RegisterIn,
    SideBasketListOut,
    TokenOut,
)
from .utils.photo_storage import PhotoService

app = FastAPI(title="Storefront API")
logger = logging.getLogger("storefront.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_photo_service = PhotoService(settings.PHOTO_STORAGE_DIR, base_url=settings.PHOTO_BASE_URL, size=settings.PHOTO_SIZE)
_basket_notifier = BasketChangeNotifier()

# Wide-open CORS keeps a locally served client working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Stored product photos are served from here; PHOTO_BASE_URL points at this mount by default.
settings.PHOTO_STORAGE_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/photos", StaticFiles(directory=settings.PHOTO_STORAGE_DIR), name="photos")

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(services.NotFoundError)
async def not_found_handler(request: Request, exc: services.NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "id": exc.id})


def get_unit_of_work(db: Session = Depends(get_session)) -> UnitOfWork:
    return UnitOfWork(db)


def get_photo_service() -> PhotoService:
    return _photo_service


def get_basket_notifier() -> BasketChangeNotifier:
    return _basket_notifier


def get_moderator_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    photo_service: PhotoService = Depends(get_photo_service),
) -> services.ModeratorService:
    return services.ModeratorService(uow, photo_service)


def get_basket_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    notifier: BasketChangeNotifier = Depends(get_basket_notifier),
) -> services.BasketService:
    return services.BasketService(uow, notifier)


def _validate_upload_filename(filename: str) -> None:
    if not filename or len(filename) > 200:
        raise HTTPException(status_code=400, detail="invalid filename")
    if "/" in filename or "\\" in filename:
        raise HTTPException(status_code=400, detail="invalid filename path")


# ---- account ----

@app.post('/api/account/register', response_model=TokenOut)
def register(payload: RegisterIn, uow: UnitOfWork = Depends(get_unit_of_work)):
    """Register a new member account and return a token for it."""
    auth = services.AuthService(uow)
    try:
        user = auth.register(payload.username, payload.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TokenOut(access_token=auth.issue_token(user), username=user.username, role=user.role)


@app.post('/api/account/login', response_model=TokenOut)
def login(payload: RegisterIn, uow: UnitOfWork = Depends(get_unit_of_work)):
    """Authenticate a user and return a short-lived JWT token.

    The token carries `user_id`, `username` and `role` and is signed
    using the configured JWT secret.
    """
    auth = services.AuthService(uow)
    token = auth.authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    user = uow.user_repository.get_by_username(payload.username)
    return TokenOut(access_token=token, username=user.username, role=user.role)


# ---- catalog ----

@app.get('/api/products', response_model=List[ProductDto])
def list_products(category: Optional[str] = None, uow: UnitOfWork = Depends(get_unit_of_work)):
    """List catalog products ordered by name, optionally filtered by category."""
    return [services.to_product_dto(p) for p in uow.product_repository.list_products(category)]


@app.get('/api/products/{id}', response_model=ProductDto)
def catalog_product(id: int, uow: UnitOfWork = Depends(get_unit_of_work)):
    product = uow.product_repository.get_product_by_id(id)
    if product is None:
        raise services.NotFoundError("Product", id)
    return services.to_product_dto(product)


# ---- basket ----

@app.get('/api/basket', response_model=SideBasketListOut)
def get_basket(
    basket: services.BasketService = Depends(get_basket_service),
    user: models.User = Depends(get_current_user),
):
    """Render the side basket table for the authenticated user."""
    view = SideBasketList(basket, user.id)
    view.load()
    try:
        return view.render()
    finally:
        view.close()


@app.post('/api/basket/items', response_model=SideBasketListOut)
def add_basket_item(
    item: BasketItemIn,
    basket: services.BasketService = Depends(get_basket_service),
    user: models.User = Depends(get_current_user),
):
    """Add a product to the basket and return the refreshed table."""
    view = SideBasketList(basket, user.id)
    view.load()
    try:
        basket.add_product(user.id, item.product_id, item.quantity)
        return view.render()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        view.close()


@app.put('/api/basket/items/{ordered_product_id}', response_model=SideBasketListOut)
def select_basket_quantity(
    ordered_product_id: int,
    body: BasketQuantityIn,
    basket: services.BasketService = Depends(get_basket_service),
    user: models.User = Depends(get_current_user),
):
    """Change a basket line's quantity (0 removes it) and return the refreshed table."""
    view = SideBasketList(basket, user.id)
    view.load()
    try:
        view.select_qty(ordered_product_id, body.quantity)
        return view.render()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        view.close()


@app.post('/api/basket/checkout', response_model=AdminOrderDto)
def checkout(
    basket: services.BasketService = Depends(get_basket_service),
    user: models.User = Depends(get_current_user),
):
    """Turn the user's basket into a placed order."""
    try:
        order = basket.checkout(user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return services.to_admin_order_dto(order)


# ---- moderator ----

@app.get('/api/moderator/orders', response_model=List[AdminOrderDto])
def get_orders(
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    """List every order, newest first."""
    return [services.to_admin_order_dto(o) for o in svc.get_orders()]


@app.get('/api/moderator/order/{id}', response_model=AdminOrderDto)
def get_order(
    id: int,
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    return services.to_admin_order_dto(svc.get_order(id))


@app.get('/api/moderator/product/{id}', response_model=ProductDto, name='get_product')
def get_product(
    id: int,
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    return services.to_product_dto(svc.get_product(id))


@app.post('/api/moderator/product', response_model=ProductDto, status_code=201)
def create_product(
    request: Request,
    response: Response,
    product: Annotated[ProductIn, Form()],
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    """Create a product from form fields; product names must be unique."""
    try:
        created = svc.create_product(product)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    response.headers['Location'] = str(request.url_for('get_product', id=created.id))
    return services.to_product_dto(created)


@app.put('/api/moderator/product/{id}', status_code=204)
def update_product(
    id: int,
    product: Annotated[ProductIn, Form()],
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    """Overwrite a product's fields; 400 when nothing changed or the new name is taken."""
    try:
        svc.update_product(id, product)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)


@app.delete('/api/moderator/product/{id}')
def delete_product(
    id: int,
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    try:
        svc.delete_product(id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=200)


@app.post('/api/moderator/product/add-photo/{product_id}', response_model=ProductPhotoDto, status_code=201)
def add_photo(
    product_id: int,
    request: Request,
    response: Response,
    file: UploadFile = File(...),
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    """Upload an image for a product. The first photo becomes the main photo."""
    svc.get_product(product_id)
    _validate_upload_filename(file.filename)
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    try:
        photo = svc.add_photo(product_id, payload, file.filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    response.headers['Location'] = str(request.url_for('get_product', id=product_id))
    return services.to_photo_dto(photo)


@app.put('/api/moderator/product/set-main-photo/{photo_id}', status_code=204)
def set_main_photo(
    photo_id: int,
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    try:
        svc.set_main_photo(photo_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)


@app.delete('/api/moderator/product/delete-photo/{photo_id}')
def delete_photo(
    photo_id: int,
    svc: services.ModeratorService = Depends(get_moderator_service),
    moderator: models.User = Depends(require_moderator),
):
    try:
        svc.delete_photo(photo_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=200)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
