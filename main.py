import logging
import os
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

from auth import (
    TEST_VENDOR_ID,
    VendorLoginError,
    authenticate_vendor,
    check_vendor_status,
    clear_vendor_session_cookies,
    create_token,
    get_current_user,
    hash_password,
    require_role,
    set_vendor_session_cookies,
    vendor_token,
    verify_password,
)
from catalog import CatalogService
from database import (
    MalformedDocument,
    MongoStore,
    StaleWriteError,
    StoreNotReady,
    get_store,
    parse_document,
    parse_documents,
    serialize_doc,
)
from images import ImageUploader, ImageValidationError
from location import current_pincode, is_valid_pincode, remember_pincode
from orders import CartLine, CheckoutError, InvalidTransition, OrderService, order_number, quote
from schemas import PINCODE_PATTERN, DeliveryAddress, Product, ProductImage, ServiceArea, User, Vendor
from settings import Settings, get_settings
from vendor_gate import STATUS_PATH, VendorGateMiddleware, safe_return_target

logger = logging.getLogger(__name__)

VENDOR_STATUS_TRANSITIONS = {
    "pending": {"active", "blocked"},
    "active": {"blocked"},
    "blocked": {"active"},
}

STATUS_MESSAGES = {
    "pending": "Your vendor account is awaiting admin approval.",
    "blocked": "Your vendor account has been blocked. Please contact admin.",
    "active": "Your vendor account is active.",
}


# ----------------------- Dependencies -----------------------
def get_catalog(store: MongoStore = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_orders(
    store: MongoStore = Depends(get_store),
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
) -> OrderService:
    return OrderService(store, catalog, settings)


def get_uploader(request: Request) -> ImageUploader:
    return request.app.state.uploader


def current_vendor(request: Request) -> Vendor:
    vendor = getattr(request.state, "vendor", None)
    if vendor is None:
        raise HTTPException(status_code=401, detail="Vendor session required")
    return vendor


def public_vendor(vendor: Vendor) -> dict:
    return vendor.model_dump(exclude={"password_hash"})


def public_user(user: dict) -> dict:
    return {"id": user["id"], "name": user["name"], "email": user["email"], "role": user.get("role", "customer")}


def owned_product(product_id: str, vendor: Vendor, catalog: CatalogService) -> Product:
    product = catalog.get_product(product_id)
    if product is None or product.vendor_id != vendor.id or product.status == "deleted":
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class LocationBody(BaseModel):
    pincode: str


class CheckoutBody(BaseModel):
    items: List[CartLine]
    address: DeliveryAddress
    delivery_option: Literal["standard", "express"] = "standard"
    payment_method: Literal["cod", "online"] = "cod"


class QuoteBody(BaseModel):
    items: List[CartLine]
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    delivery_option: Literal["standard", "express"] = "standard"


class VendorRegisterBody(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    password: str = Field(..., min_length=6)
    pincodes: List[str] = []


class VendorProfileBody(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    version: int


class VendorPincodesBody(BaseModel):
    pincodes: List[str]
    version: int


class VendorOpenBody(BaseModel):
    is_open: bool
    version: int


class ProductCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    mrp: float = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    unit: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    pincodes: List[str]
    image: Optional[str] = None


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    mrp: Optional[float] = Field(None, gt=0)
    category: Optional[str] = None
    unit: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    pincodes: Optional[List[str]] = None
    status: Optional[Literal["active", "out_of_stock"]] = None
    version: int


class AdminVendorBody(VendorRegisterBody):
    status: Literal["pending", "active", "blocked"] = "active"


class VendorStatusBody(BaseModel):
    status: Literal["pending", "active", "blocked"]


class ImageDeleteBody(BaseModel):
    public_id: Optional[str] = None


def check_pincodes(pincodes: List[str], allowed: Optional[List[str]] = None) -> List[str]:
    cleaned = list(dict.fromkeys(p.strip() for p in pincodes))
    if not cleaned:
        raise HTTPException(status_code=400, detail="Select at least one pincode for delivery area")
    bad = [p for p in cleaned if not is_valid_pincode(p)]
    if bad:
        raise HTTPException(status_code=400, detail=f"Invalid pincode: {', '.join(bad)}")
    if allowed is not None:
        outside = [p for p in cleaned if p not in allowed]
        if outside:
            raise HTTPException(status_code=400, detail=f"Pincode not served: {', '.join(outside)}")
    return cleaned


def service_areas(store: MongoStore) -> List[str]:
    return sorted(d["pincode"] for d in store.get_documents("pincode"))


# ----------------------- Health -----------------------
health = APIRouter()


@health.get("/")
def root():
    return {"message": "Quick-commerce API running"}


@health.get("/test")
def test_database(store: MongoStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if store.is_ready:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = store.db.list_collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
accounts = APIRouter(prefix="/auth")


@accounts.post("/signup")
def signup(body: SignupBody, store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    existing = store.find_one("user", {"email": body.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(name=body.name, email=body.email, password_hash=hash_password(body.password, settings.jwt_secret))
    user_id = store.create_document("user", user)
    token = create_token({"id": user_id, "email": body.email, "role": "customer"}, settings)
    return {"token": token, "user": {"id": user_id, "name": body.name, "email": body.email, "role": "customer"}}


@accounts.post("/login")
def login(body: LoginBody, store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    user = store.find_one("user", {"email": body.email})
    if not user or not verify_password(body.password, user.get("password_hash"), settings.jwt_secret):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    suser = serialize_doc(user)
    token = create_token({"id": suser["id"], "email": suser["email"], "role": suser.get("role", "customer")}, settings)
    return {"token": token, "user": public_user(suser)}


# ----------------------- Catalog -----------------------
catalog_routes = APIRouter(prefix="/api")


@catalog_routes.get("/location")
def get_location(request: Request, settings: Settings = Depends(get_settings)):
    return {"pincode": current_pincode(request, settings)}


@catalog_routes.put("/location")
def set_location(body: LocationBody):
    pincode = body.pincode.strip()
    if not is_valid_pincode(pincode):
        raise HTTPException(status_code=400, detail="Pincode must be 6 digits")
    response = JSONResponse({"pincode": pincode})
    remember_pincode(response, pincode)
    return response


@catalog_routes.get("/products")
def list_products(
    request: Request,
    pincode: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    zone = current_pincode(request, settings, pincode)
    return {"pincode": zone, "products": [p.model_dump() for p in catalog.products_for_pincode(zone)]}


@catalog_routes.get("/products/{product_id}")
def get_product(product_id: str, catalog: CatalogService = Depends(get_catalog)):
    product = catalog.get_product(product_id)
    if product is None or product.status == "deleted":
        raise HTTPException(status_code=404, detail="Product not found")
    return product.model_dump()


@catalog_routes.get("/categories")
def list_categories(
    request: Request,
    pincode: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    zone = current_pincode(request, settings, pincode)
    return {"pincode": zone, "categories": catalog.categories_for_pincode(zone)}


@catalog_routes.get("/categories/{slug}/products")
def category_products(
    slug: str,
    request: Request,
    pincode: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    zone = current_pincode(request, settings, pincode)
    return {"pincode": zone, "category": slug,
            "products": [p.model_dump() for p in catalog.products_for_category(slug, zone)]}


@catalog_routes.get("/vendors")
def list_vendors(
    request: Request,
    pincode: Optional[str] = None,
    catalog: CatalogService = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    zone = current_pincode(request, settings, pincode)
    return {"pincode": zone, "vendors": [public_vendor(v) for v in catalog.vendors_for_pincode(zone)]}


# ----------------------- Checkout & Orders -----------------------
shop = APIRouter()


@shop.post("/api/checkout/quote")
def checkout_quote(body: QuoteBody, orders: OrderService = Depends(get_orders), settings: Settings = Depends(get_settings)):
    try:
        items = orders.build_items(body.items, body.pincode)
    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return quote(items, body.delivery_option, settings)


@shop.post("/api/checkout")
def checkout(body: CheckoutBody, user=Depends(require_role("customer")), orders: OrderService = Depends(get_orders)):
    try:
        order = orders.place_order(user["id"], body.items, body.address, body.delivery_option, body.payment_method)
    except CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RedirectResponse(f"/checkout/success?orderId={order.id}", status_code=303)


@shop.get("/checkout/success")
def checkout_success(
    orderId: Optional[str] = None,
    user=Depends(get_current_user),
    orders: OrderService = Depends(get_orders),
):
    order = orders.get(orderId) if orderId else None
    if order is None or order.user_id != user["id"]:
        return RedirectResponse("/", status_code=303)
    return {"order_id": order.id, "order_number": order_number(order.id), "total": order.total,
            "order_status": order.order_status}


@shop.get("/api/orders")
def my_orders(user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    return [o.model_dump() for o in orders.for_user(user["id"])]


@shop.get("/api/orders/{order_id}")
def my_order(order_id: str, user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    order = orders.get(order_id)
    if order is None or order.user_id != user["id"]:
        raise HTTPException(status_code=404, detail="Order not found")
    return order.model_dump()


@shop.post("/api/orders/{order_id}/cancel")
def cancel_my_order(order_id: str, user=Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    order = orders.get(order_id)
    if order is None or order.user_id != user["id"]:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        order = orders.cancel(order)
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    return order.model_dump()


# ----------------------- Vendor -----------------------
vendor_routes = APIRouter(prefix="/vendor")


@vendor_routes.get("/login")
def vendor_login_page(redirect: Optional[str] = None):
    return {"page": "vendor-login", "redirect": redirect}


@vendor_routes.post("/login")
def vendor_login(
    body: LoginBody,
    redirect: Optional[str] = None,
    store: MongoStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    try:
        vendor = authenticate_vendor(store, body.email, body.password, settings)
    except VendorLoginError as e:
        status = 401 if e.kind == "invalid_credentials" else 403
        return JSONResponse({"detail": e.message, "kind": e.kind}, status_code=status)

    token = vendor_token(vendor, settings)
    try:
        check_vendor_status(vendor)
    except VendorLoginError as e:
        response = JSONResponse({"detail": e.message, "kind": e.kind, "redirect": STATUS_PATH}, status_code=403)
        set_vendor_session_cookies(response, vendor.id, token, settings)
        return response

    response = JSONResponse({"redirect": safe_return_target(redirect), "token": token, "vendor": public_vendor(vendor)})
    set_vendor_session_cookies(response, vendor.id, token, settings, test_account=vendor.id == TEST_VENDOR_ID)
    return response


@vendor_routes.post("/logout")
def vendor_logout():
    response = JSONResponse({"redirect": "/vendor/login"})
    clear_vendor_session_cookies(response)
    return response


@vendor_routes.post("/register", status_code=201)
def vendor_register(body: VendorRegisterBody, store: MongoStore = Depends(get_store),
                    settings: Settings = Depends(get_settings)):
    if store.find_one("vendor", {"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    pincodes = check_pincodes(body.pincodes) if body.pincodes else []
    vendor = Vendor(
        name=body.name,
        email=body.email,
        phone=body.phone,
        address=body.address,
        pincodes=pincodes,
        status="pending",
        is_open=True,
        password_hash=hash_password(body.password, settings.jwt_secret),
    )
    vendor_id = store.create_document("vendor", vendor)
    return {"id": vendor_id, "status": "pending"}


@vendor_routes.get("/status")
def vendor_status(vendor: Vendor = Depends(current_vendor)):
    return {"status": vendor.status, "message": STATUS_MESSAGES[vendor.status]}


@vendor_routes.get("")
def vendor_dashboard(vendor: Vendor = Depends(current_vendor), store: MongoStore = Depends(get_store),
                     orders: OrderService = Depends(get_orders)):
    products = {s: store.count("product", {"vendor_id": vendor.id, "status": s})
                for s in ("active", "out_of_stock", "deleted")}
    vendor_orders = orders.for_vendor(vendor.id)
    by_status = {}
    revenue = 0.0
    for o in vendor_orders:
        by_status[o.order_status] = by_status.get(o.order_status, 0) + 1
        if o.order_status == "delivered":
            revenue += sum(i.price * i.quantity for i in o.items if i.vendor_id == vendor.id)
    return {
        "vendor": public_vendor(vendor),
        "products": products,
        "orders": by_status,
        "revenue": round(revenue, 2),
    }


@vendor_routes.get("/profile")
def vendor_profile(vendor: Vendor = Depends(current_vendor)):
    return public_vendor(vendor)


def save_vendor(store: MongoStore, vendor: Vendor, changes: dict, version: int) -> dict:
    if not store.update_document("vendor", vendor.id, changes, expected_version=version):
        raise HTTPException(status_code=404, detail="Vendor not found")
    return public_vendor(parse_document(Vendor, store.find_by_id("vendor", vendor.id), "vendor"))


@vendor_routes.put("/profile")
def update_vendor_profile(body: VendorProfileBody, vendor: Vendor = Depends(current_vendor),
                          store: MongoStore = Depends(get_store)):
    changes = body.model_dump(exclude_none=True, exclude={"version"})
    return save_vendor(store, vendor, changes, body.version)


@vendor_routes.put("/profile/pincodes")
def update_vendor_pincodes(body: VendorPincodesBody, vendor: Vendor = Depends(current_vendor),
                           store: MongoStore = Depends(get_store)):
    allowed = service_areas(store) or None
    pincodes = check_pincodes(body.pincodes, allowed)
    return save_vendor(store, vendor, {"pincodes": pincodes}, body.version)


@vendor_routes.put("/open")
def set_vendor_open(body: VendorOpenBody, vendor: Vendor = Depends(current_vendor),
                    store: MongoStore = Depends(get_store)):
    return save_vendor(store, vendor, {"is_open": body.is_open}, body.version)


@vendor_routes.get("/products")
def vendor_products(include_deleted: bool = False, vendor: Vendor = Depends(current_vendor),
                    store: MongoStore = Depends(get_store)):
    filt = {"vendor_id": vendor.id}
    if not include_deleted:
        filt["status"] = {"$ne": "deleted"}
    docs = store.get_documents("product", filt, sort=[("created_at", -1)])
    return [p.model_dump() for p in parse_documents(Product, docs, "product")]


@vendor_routes.post("/products", status_code=201)
def create_vendor_product(body: ProductCreateBody, vendor: Vendor = Depends(current_vendor),
                          store: MongoStore = Depends(get_store)):
    pincodes = check_pincodes(body.pincodes, vendor.pincodes)
    product = Product(**body.model_dump(exclude={"pincodes"}), pincodes=pincodes, vendor_id=vendor.id,
                      status="active")
    product_id = store.create_document("product", product)
    logger.info("Product %s added by vendor %s", product_id, vendor.id)
    return {"id": product_id}


@vendor_routes.put("/products/{product_id}")
def update_vendor_product(product_id: str, body: ProductUpdateBody, vendor: Vendor = Depends(current_vendor),
                          store: MongoStore = Depends(get_store), catalog: CatalogService = Depends(get_catalog)):
    owned_product(product_id, vendor, catalog)
    changes = body.model_dump(exclude_none=True, exclude={"version"})
    if "pincodes" in changes:
        changes["pincodes"] = check_pincodes(changes["pincodes"], vendor.pincodes)
    store.update_document("product", product_id, changes, expected_version=body.version)
    return catalog.get_product(product_id).model_dump()


def delete_product_images(uploader: ImageUploader, product_id: str, public_ids: List[Optional[str]]) -> List[str]:
    """Delete CDN images, log-and-continue; returns the ids left behind."""
    orphaned = []
    for public_id in filter(None, public_ids):
        result = uploader.delete(public_id)
        if not result.success:
            logger.warning("Could not delete image %s of product %s: %s", public_id, product_id, result.error)
            orphaned.append(public_id)
    return orphaned


@vendor_routes.delete("/products/{product_id}")
def delete_vendor_product(product_id: str, vendor: Vendor = Depends(current_vendor),
                          store: MongoStore = Depends(get_store), catalog: CatalogService = Depends(get_catalog),
                          uploader: ImageUploader = Depends(get_uploader)):
    product = owned_product(product_id, vendor, catalog)
    store.update_document("product", product_id, {"status": "deleted"})
    image_ids = [product.image_public_id] + [i.public_id for i in product.additional_images]
    return {"ok": True, "orphaned_images": delete_product_images(uploader, product_id, image_ids)}


@vendor_routes.post("/products/{product_id}/images")
def upload_product_image(product_id: str, file: UploadFile = File(...), primary: bool = Query(True),
                         vendor: Vendor = Depends(current_vendor), store: MongoStore = Depends(get_store),
                         catalog: CatalogService = Depends(get_catalog),
                         uploader: ImageUploader = Depends(get_uploader)):
    product = owned_product(product_id, vendor, catalog)
    data = file.file.read()
    try:
        result = uploader.upload(data, file.filename or "image", file.content_type, vendor.id)
    except ImageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result.success:
        return JSONResponse(
            {"success": False, "error_code": result.error_code, "error_message": result.error_message},
            status_code=502,
        )
    if primary:
        changes = {"image": result.url, "image_public_id": result.public_id}
    else:
        extra = product.additional_images + [ProductImage(url=result.url, public_id=result.public_id)]
        changes = {"additional_images": [i.model_dump() for i in extra]}
    store.update_document("product", product_id, changes)
    replaced = [product.image_public_id] if primary and product.image_public_id != result.public_id else []
    orphaned = delete_product_images(uploader, product_id, replaced)
    return {"success": True, "url": result.url, "public_id": result.public_id, "orphaned_images": orphaned}


def vendor_order(order_id: str, vendor: Vendor, orders: OrderService):
    order = orders.get(order_id)
    if order is None or not any(i.vendor_id == vendor.id for i in order.items):
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@vendor_routes.get("/orders")
def list_vendor_orders(status: Optional[str] = None, vendor: Vendor = Depends(current_vendor),
                       orders: OrderService = Depends(get_orders)):
    result = orders.for_vendor(vendor.id)
    if status:
        result = [o for o in result if o.order_status == status]
    return [o.model_dump() for o in result]


@vendor_routes.get("/orders/{order_id}")
def get_vendor_order(order_id: str, vendor: Vendor = Depends(current_vendor), orders: OrderService = Depends(get_orders)):
    return vendor_order(order_id, vendor, orders).model_dump()


@vendor_routes.post("/orders/{order_id}/advance")
def advance_vendor_order(order_id: str, vendor: Vendor = Depends(current_vendor),
                         orders: OrderService = Depends(get_orders)):
    order = vendor_order(order_id, vendor, orders)
    try:
        return orders.advance(order).model_dump()
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))


@vendor_routes.post("/orders/{order_id}/cancel")
def cancel_vendor_order(order_id: str, vendor: Vendor = Depends(current_vendor),
                        orders: OrderService = Depends(get_orders)):
    order = vendor_order(order_id, vendor, orders)
    try:
        return orders.cancel(order).model_dump()
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))


# ----------------------- Admin -----------------------
admin = APIRouter(prefix="/admin", dependencies=[Depends(require_role("admin"))])


@admin.get("/stats")
def admin_stats(store: MongoStore = Depends(get_store)):
    return {
        "users": store.count("user"),
        "vendors": {s: store.count("vendor", {"status": s}) for s in ("active", "pending", "blocked")},
        "products": store.count("product", {"status": {"$ne": "deleted"}}),
        "orders": store.count("order"),
    }


@admin.get("/vendors")
def admin_vendors(status: Optional[Literal["pending", "active", "blocked"]] = None,
                  store: MongoStore = Depends(get_store)):
    docs = store.get_documents("vendor", {"status": status} if status else {}, sort=[("created_at", -1)])
    return [public_vendor(v) for v in parse_documents(Vendor, docs, "vendor")]


@admin.post("/vendors", status_code=201)
def admin_create_vendor(body: AdminVendorBody, store: MongoStore = Depends(get_store),
                        settings: Settings = Depends(get_settings)):
    if store.find_one("vendor", {"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    vendor = Vendor(
        name=body.name,
        email=body.email,
        phone=body.phone,
        address=body.address,
        pincodes=check_pincodes(body.pincodes) if body.pincodes else [],
        status=body.status,
        password_hash=hash_password(body.password, settings.jwt_secret),
    )
    return {"id": store.create_document("vendor", vendor), "status": body.status}


@admin.put("/vendors/{vendor_id}/status")
def admin_set_vendor_status(vendor_id: str, body: VendorStatusBody, store: MongoStore = Depends(get_store)):
    doc = store.find_by_id("vendor", vendor_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Vendor not found")
    try:
        vendor = parse_document(Vendor, doc, "vendor")
    except MalformedDocument:
        raise HTTPException(status_code=404, detail="Vendor not found")
    if body.status == vendor.status:
        return public_vendor(vendor)
    if body.status not in VENDOR_STATUS_TRANSITIONS[vendor.status]:
        raise HTTPException(status_code=400, detail=f"Cannot move vendor from {vendor.status} to {body.status}")
    store.update_document("vendor", vendor_id, {"status": body.status}, expected={"status": vendor.status})
    logger.info("Vendor %s: %s -> %s", vendor_id, vendor.status, body.status)
    return public_vendor(vendor.model_copy(update={"status": body.status, "version": vendor.version + 1}))


@admin.get("/pincodes")
def admin_pincodes(store: MongoStore = Depends(get_store)):
    return service_areas(store)


@admin.post("/pincodes", status_code=201)
def admin_add_pincode(body: ServiceArea, store: MongoStore = Depends(get_store)):
    if store.find_one("pincode", {"pincode": body.pincode}):
        raise HTTPException(status_code=400, detail="Pincode already defined")
    return {"id": store.create_document("pincode", body)}


# ----------------------- Delivery -----------------------
delivery = APIRouter(prefix="/delivery")


@delivery.get("/orders")
def delivery_orders(user=Depends(require_role("delivery")), store: MongoStore = Depends(get_store)):
    docs = store.get_documents(
        "order",
        {"$or": [{"order_status": "ready"},
                 {"order_status": "out_for_delivery", "delivery_person_id": user["id"]}]},
        sort=[("created_at", 1)],
    )
    return [serialize_doc(d) for d in docs]


def delivery_order(order_id: str, orders: OrderService):
    order = orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@delivery.post("/orders/{order_id}/assign")
def assign_delivery(order_id: str, user=Depends(require_role("delivery")), orders: OrderService = Depends(get_orders)):
    order = delivery_order(order_id, orders)
    try:
        return orders.transition(order, "out_for_delivery", delivery_person_id=user["id"]).model_dump()
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))


@delivery.post("/orders/{order_id}/delivered")
def mark_delivered(order_id: str, user=Depends(require_role("delivery")), orders: OrderService = Depends(get_orders)):
    order = delivery_order(order_id, orders)
    if order.delivery_person_id != user["id"]:
        raise HTTPException(status_code=403, detail="Order assigned to another delivery person")
    try:
        return orders.transition(order, "delivered").model_dump()
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))


# ----------------------- Images -----------------------
image_routes = APIRouter(prefix="/api/images")


@image_routes.post("/delete")
def delete_image(body: ImageDeleteBody, user=Depends(require_role("admin")),
                 settings: Settings = Depends(get_settings), uploader: ImageUploader = Depends(get_uploader)):
    if not body.public_id:
        raise HTTPException(status_code=400, detail="Public ID is required")
    if not settings.cloudinary_configured:
        raise HTTPException(status_code=500, detail="Cloudinary is not properly configured")
    result = uploader.delete(body.public_id)
    if not result.success:
        raise HTTPException(status_code=500, detail=str(result.error) or "Failed to delete image")
    return {"success": True}


# ----------------------- Seed Demo Data -----------------------
seed_routes = APIRouter()

DEMO_PINCODES = [
    {"pincode": "110001", "label": "Connaught Place"},
    {"pincode": "110002", "label": "Darya Ganj"},
    {"pincode": "110003", "label": "Aliganj"},
    {"pincode": "110004", "label": "Ansari Nagar"},
    {"pincode": "110005", "label": "Babar Road"},
]

DEMO_VENDORS = [
    {
        "name": "Fresh Farms",
        "email": "contact@freshfarms.com",
        "phone": "+91 9876543210",
        "address": "12 Janpath, New Delhi",
        "pincodes": ["110001", "110002", "110003"],
        "status": "active",
    },
    {
        "name": "Dairy Delight",
        "email": "info@dairydelight.com",
        "phone": "+91 9876543211",
        "address": "4 Babar Road, New Delhi",
        "pincodes": ["110001", "110005"],
        "status": "active",
    },
    {
        "name": "Spice World",
        "email": "support@spiceworld.com",
        "phone": "+91 9876543212",
        "address": "88 Aliganj, New Delhi",
        "pincodes": ["110003"],
        "status": "pending",
    },
]

DEMO_PRODUCTS = [
    {
        "name": "Fresh Bananas",
        "description": "Ripe Robusta bananas, sold by the dozen.",
        "price": 49,
        "mrp": 60,
        "category": "fruits-vegetables",
        "unit": "12 pcs",
        "stock": 80,
        "vendor": "contact@freshfarms.com",
        "pincodes": ["110001", "110002"],
    },
    {
        "name": "Tomatoes",
        "description": "Farm fresh hybrid tomatoes.",
        "price": 32,
        "mrp": 40,
        "category": "fruits-vegetables",
        "unit": "1 kg",
        "stock": 120,
        "vendor": "contact@freshfarms.com",
        "pincodes": ["110001", "110003"],
    },
    {
        "name": "Whole Wheat Bread",
        "description": "Soft whole wheat sandwich loaf.",
        "price": 45,
        "mrp": 50,
        "category": "bakery",
        "unit": "400 g",
        "stock": 30,
        "vendor": "contact@freshfarms.com",
        "pincodes": ["110002"],
    },
    {
        "name": "Toned Milk",
        "description": "Pasteurised toned milk.",
        "price": 27,
        "mrp": 28,
        "category": "dairy",
        "unit": "500 ml",
        "stock": 200,
        "vendor": "info@dairydelight.com",
        "pincodes": ["110001", "110005"],
    },
    {
        "name": "Paneer",
        "description": "Fresh malai paneer.",
        "price": 90,
        "mrp": 100,
        "category": "dairy",
        "unit": "200 g",
        "stock": 40,
        "vendor": "info@dairydelight.com",
        "pincodes": ["110005"],
    },
]


@seed_routes.post("/seed")
def seed(store: MongoStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    if store.count("product") > 0:
        return {"seeded": False, "message": "Products already exist"}
    if store.count("pincode") == 0:
        for area in DEMO_PINCODES:
            store.create_document("pincode", ServiceArea(**area))
    vendor_ids = {}
    for v in DEMO_VENDORS:
        existing = store.find_one("vendor", {"email": v["email"]})
        if existing:
            vendor_ids[v["email"]] = str(existing["_id"])
            continue
        vendor = Vendor(**v, password_hash=hash_password("vendor123", settings.jwt_secret))
        vendor_ids[v["email"]] = store.create_document("vendor", vendor)
    for p in DEMO_PRODUCTS:
        data = {k: val for k, val in p.items() if k != "vendor"}
        store.create_document("product", Product(**data, vendor_id=vendor_ids[p["vendor"]]))
    # create admin user if none
    if store.count("user", {"role": "admin"}) == 0:
        admin_user = User(name="Admin", email="admin@shop.com",
                          password_hash=hash_password("admin123", settings.jwt_secret), role="admin")
        store.create_document("user", admin_user)
    return {"seeded": True, "products": store.count("product")}


# ----------------------- App -----------------------
def create_app(settings: Optional[Settings] = None, store: Optional[MongoStore] = None,
               uploader: Optional[ImageUploader] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or MongoStore(settings)
    uploader = uploader or ImageUploader.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.connect()
        yield
        store.close()

    app = FastAPI(title="Quick-commerce Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.uploader = uploader

    app.add_middleware(VendorGateMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StaleWriteError)
    async def stale_write(request: Request, exc: StaleWriteError):
        return JSONResponse({"detail": "Record was changed by someone else, reload and try again"}, status_code=409)

    @app.exception_handler(PyMongoError)
    async def backend_error(request: Request, exc: PyMongoError):
        logger.error("Database error on %s", request.url.path, exc_info=exc)
        return JSONResponse({"detail": "Service unavailable"}, status_code=503)

    @app.exception_handler(StoreNotReady)
    async def store_not_ready(request: Request, exc: StoreNotReady):
        return JSONResponse({"detail": "Service unavailable"}, status_code=503)

    for router in (health, accounts, catalog_routes, shop, vendor_routes, admin, delivery, image_routes, seed_routes):
        app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
