import logging
import os
import random
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Literal

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, ValidationError
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

import config
from accounts import AccountStore, MongoAccountStore, public_account
from auth import AccountError, AccountService
from avatars import AvatarHost, AvatarUploadError, CloudinaryAvatarHost
from dashboard import (
    DashboardSnapshot,
    apply_date_range,
    build_snapshot,
    product_sales_share,
    sales_per_month,
    view_to_dict,
)
from database import db, create_document, get_documents
from mailer import Mailer, MailError
from report import ReportSections, build_report, render_pdf
from schemas import User, Product, Order, OrderItem
from security import decode_access_token, hash_password, session_token_for
from templates import verification_error_page, verification_failed_page, verification_success_page
from tokens import TokenManager

config.configure_logging()
logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="FleurEase API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope
def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _failure(400, message)


@app.exception_handler(ValidationError)
async def document_validation_handler(request: Request, exc: ValidationError):
    errors = exc.errors()
    return _failure(400, errors[0].get("msg", "Invalid data") if errors else "Invalid data")


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError):
    return _failure(exc.status_code, exc.message)


@app.exception_handler(AvatarUploadError)
async def avatar_error_handler(request: Request, exc: AvatarUploadError):
    return _failure(500, "Avatar upload failed")


# Collaborators
_mailer = Mailer()
_avatar_host = CloudinaryAvatarHost()


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def get_account_store(database=Depends(get_db)) -> AccountStore:
    return MongoAccountStore(database)


def get_mailer() -> Mailer:
    return _mailer


def get_avatar_host() -> AvatarHost:
    return _avatar_host


def get_token_manager(store: AccountStore = Depends(get_account_store)) -> TokenManager:
    return TokenManager(
        store,
        verification_ttl=timedelta(hours=config.VERIFICATION_TOKEN_TTL_HOURS),
        reset_ttl=timedelta(minutes=config.RESET_TOKEN_TTL_MINUTES),
    )


def get_account_service(
    store: AccountStore = Depends(get_account_store),
    tokens: TokenManager = Depends(get_token_manager),
    mailer: Mailer = Depends(get_mailer),
    avatars: AvatarHost = Depends(get_avatar_host),
) -> AccountService:
    return AccountService(store, tokens, mailer, avatars, frontend_url=config.FRONTEND_URL)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    store: AccountStore = Depends(get_account_store),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Login first to access this resource")
    payload = decode_access_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = store.find_by_id(payload["sub"])
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def require_admin(user: dict = Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail=f"Role ({user.get('role')}) is not allowed to access this resource")
    return user


def _oid(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def _stringify(docs):
    for d in docs:
        d["_id"] = str(d["_id"])  # type: ignore
    return docs


def _session(account: dict) -> dict:
    return {"success": True, "token": session_token_for(account), "user": public_account(account)}


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


# Health checks
@app.get("/")
def root():
    return {"message": "FleurEase API running"}


@app.get("/test")
def test_database():
    status = {
        "backend": "running",
        "database": "not configured",
        "database_name": None,
        "collections": [],
    }
    if db is None:
        return status
    try:
        status["collections"] = sorted(db.list_collection_names())
        status["database_name"] = db.name
        status["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        status["database"] = f"error: {str(e)[:100]}"
    return status


# Auth models
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    avatar: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class SocialLoginPayload(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=100)
    provider_user_id: str = Field(..., min_length=1)
    avatar: Optional[str] = None


class EmailPayload(BaseModel):
    email: EmailStr


class ResetPasswordPayload(BaseModel):
    password: str = Field(..., min_length=6)
    confirm_password: str


@app.post("/api/v1/register", status_code=201)
async def register(payload: RegisterPayload, request: Request, service: AccountService = Depends(get_account_service)):
    try:
        account = await service.register(payload.name, payload.email, payload.password, payload.avatar, _base_url(request))
    except MailError:
        raise HTTPException(status_code=500, detail="Failed to send verification email. Please try again.")
    return {
        "success": True,
        "message": f"Verification email sent to {account['email']}. Please check your inbox to verify your account.",
    }


@app.post("/api/v1/login")
def login(payload: LoginPayload, service: AccountService = Depends(get_account_service)):
    account = service.authenticate(payload.email, payload.password)
    return _session(account)


@app.post("/api/v1/google-login")
def google_login(payload: SocialLoginPayload, service: AccountService = Depends(get_account_service)):
    account = service.social_login("google", payload.email, payload.name, payload.provider_user_id, payload.avatar)
    return _session(account)


@app.post("/api/v1/facebook-login")
def facebook_login(payload: SocialLoginPayload, service: AccountService = Depends(get_account_service)):
    account = service.social_login("facebook", payload.email, payload.name, payload.provider_user_id, payload.avatar)
    return _session(account)


@app.get("/api/v1/verify-email/{token}", response_class=HTMLResponse)
def verify_email(token: str, service: AccountService = Depends(get_account_service)):
    try:
        account = service.verify_email(token)
    except AccountError:
        return HTMLResponse(verification_failed_page(f"{config.FRONTEND_URL}/register"), status_code=400)
    except PyMongoError:
        logger.exception("Email verification failed")
        return HTMLResponse(verification_error_page(), status_code=500)
    logger.info("User verified successfully: %s", account["email"])
    return HTMLResponse(verification_success_page(f"{config.FRONTEND_URL}/login"))


@app.post("/api/v1/verify-email/resend")
async def resend_verification(payload: EmailPayload, request: Request, service: AccountService = Depends(get_account_service)):
    try:
        account = await service.resend_verification(payload.email, _base_url(request))
    except MailError:
        raise HTTPException(status_code=500, detail="Failed to send verification email. Please try again.")
    return {"success": True, "message": f"Verification email sent to {account['email']}"}


@app.post("/api/v1/password/forgot")
async def forgot_password(payload: EmailPayload, service: AccountService = Depends(get_account_service)):
    try:
        account = await service.request_password_reset(payload.email)
    except MailError:
        raise HTTPException(status_code=500, detail="Failed to send password recovery email. Please try again.")
    return {"success": True, "message": f"Email sent to: {account['email']}"}


@app.put("/api/v1/password/reset/{token}")
def reset_password(token: str, payload: ResetPasswordPayload, service: AccountService = Depends(get_account_service)):
    account = service.reset_password(token, payload.password, payload.confirm_password)
    return _session(account)


# Profile
class ProfilePayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    address: str = ""
    city: str = ""
    postal_code: str = ""
    phone_no: str = ""
    avatar: Optional[str] = None


class PasswordUpdatePayload(BaseModel):
    old_password: str
    password: str = Field(..., min_length=6)


@app.get("/api/v1/me")
def get_profile(user: dict = Depends(get_current_user)):
    return {"success": True, "user": public_account(user)}


@app.put("/api/v1/me/update")
async def update_profile(payload: ProfilePayload, user: dict = Depends(get_current_user),
                         service: AccountService = Depends(get_account_service)):
    fields = payload.model_dump(exclude={"avatar"})
    updated = await service.update_profile(user, fields, payload.avatar)
    return {"success": True, "user": public_account(updated)}


@app.put("/api/v1/password/update")
def update_password(payload: PasswordUpdatePayload, user: dict = Depends(get_current_user),
                    service: AccountService = Depends(get_account_service)):
    updated = service.change_password(user, payload.old_password, payload.password)
    return _session(updated)


# Wishlist: product ids stored on the user document
class WishlistPayload(BaseModel):
    product_id: str


@app.get("/api/v1/wishlist")
def get_wishlist(user: dict = Depends(get_current_user), database=Depends(get_db)):
    ids = [ObjectId(pid) for pid in user.get("wishlist", []) if ObjectId.is_valid(pid)]
    products = _stringify(get_documents("product", {"_id": {"$in": ids}})) if ids else []
    return {"success": True, "wishlist": products}


@app.post("/api/v1/wishlist")
def add_wishlist(payload: WishlistPayload, user: dict = Depends(get_current_user),
                 service: AccountService = Depends(get_account_service)):
    updated = service.add_to_wishlist(user, payload.product_id)
    return {"success": True, "message": "Product added to wishlist", "wishlist": updated["wishlist"]}


@app.delete("/api/v1/wishlist/{product_id}")
def remove_wishlist(product_id: str, user: dict = Depends(get_current_user),
                    service: AccountService = Depends(get_account_service)):
    updated = service.remove_from_wishlist(user, product_id)
    return {"success": True, "message": "Product removed from wishlist", "wishlist": updated["wishlist"]}


# Users (admin)
class RolePayload(BaseModel):
    role: Literal["admin", "user"]


class SuspensionPayload(BaseModel):
    reason: str = ""
    subject: str = ""


def _account_or_404(user_id: str, store: AccountStore) -> dict:
    account = store.find_by_id(user_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"User does not found with id: {user_id}")
    return account


@app.get("/api/v1/admin/users", dependencies=[Depends(require_admin)])
def list_users(store: AccountStore = Depends(get_account_store)):
    return {"success": True, "users": [public_account(u) for u in store.list_accounts()]}


@app.get("/api/v1/admin/user/{user_id}", dependencies=[Depends(require_admin)])
def get_user(user_id: str, store: AccountStore = Depends(get_account_store)):
    return {"success": True, "user": public_account(_account_or_404(user_id, store))}


@app.put("/api/v1/admin/user/{user_id}", dependencies=[Depends(require_admin)])
def update_user_role(user_id: str, payload: RolePayload, store: AccountStore = Depends(get_account_store)):
    _account_or_404(user_id, store)
    updated = store.update_fields(user_id, {"role": payload.role})
    return {"success": True, "user": public_account(updated)}


@app.delete("/api/v1/admin/user/{user_id}", dependencies=[Depends(require_admin)])
async def delete_user(user_id: str, store: AccountStore = Depends(get_account_store),
                      service: AccountService = Depends(get_account_service)):
    await service.delete_account(_account_or_404(user_id, store))
    return {"success": True}


@app.put("/api/v1/admin/user/{user_id}/suspend", dependencies=[Depends(require_admin)])
async def suspend_user(user_id: str, payload: SuspensionPayload, store: AccountStore = Depends(get_account_store),
                       service: AccountService = Depends(get_account_service)):
    try:
        await service.set_suspension(_account_or_404(user_id, store), True, payload.reason, payload.subject)
    except MailError:
        raise HTTPException(status_code=500, detail="User suspended but the notification email could not be sent")
    return {"success": True, "message": "User suspended and notification email sent"}


@app.put("/api/v1/admin/user/{user_id}/unsuspend", dependencies=[Depends(require_admin)])
async def unsuspend_user(user_id: str, payload: SuspensionPayload, store: AccountStore = Depends(get_account_store),
                         service: AccountService = Depends(get_account_service)):
    try:
        await service.set_suspension(_account_or_404(user_id, store), False, payload.reason, payload.subject)
    except MailError:
        raise HTTPException(status_code=500, detail="User unsuspended but the notification email could not be sent")
    return {"success": True, "message": "User unsuspended and notification email sent"}


@app.post("/api/v1/admin/users/purge-unverified", dependencies=[Depends(require_admin)])
async def purge_unverified(service: AccountService = Depends(get_account_service)):
    removed = await service.purge_stale_unverified()
    return {"success": True, "removed": removed}


# Products
class ProductPayload(BaseModel):
    name: str
    description: Optional[str] = None
    price: float
    stock: int = 0
    category: Optional[str] = None
    images: List[str] = []


@app.get("/api/v1/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, database=Depends(get_db)):
    filter_q = {}
    if q:
        filter_q["name"] = {"$regex": q, "$options": "i"}
    if category:
        filter_q["category"] = category
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        filter_q["price"] = price_filter
    items = _stringify(get_documents("product", filter_q))
    return {"success": True, "count": len(items), "products": items}


@app.get("/api/v1/product/{product_id}")
def get_product(product_id: str, database=Depends(get_db)):
    doc = database["product"].find_one({"_id": _oid(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    doc["_id"] = str(doc["_id"])
    return {"success": True, "product": doc}


@app.get("/api/v1/admin/products", dependencies=[Depends(require_admin)])
def admin_products(database=Depends(get_db)):
    return {"success": True, "products": _stringify(get_documents("product"))}


@app.post("/api/v1/admin/product/new", status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductPayload, database=Depends(get_db)):
    product = Product(**payload.model_dump())
    product_id = create_document("product", product)
    return {"success": True, "product": {"_id": product_id, **product.model_dump(exclude={"created_at"})}}


@app.put("/api/v1/admin/product/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductPayload, database=Depends(get_db)):
    oid = _oid(product_id)
    update_doc = Product(**payload.model_dump()).model_dump(exclude={"created_at"})
    res = database["product"].update_one({"_id": oid}, {"$set": update_doc, "$currentDate": {"updated_at": True}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True}


@app.delete("/api/v1/admin/product/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, database=Depends(get_db)):
    res = database["product"].delete_one({"_id": _oid(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True}


# Orders
class CartItem(BaseModel):
    product_id: str
    quantity: int


class CreateOrderPayload(BaseModel):
    items: List[CartItem]


class OrderStatusPayload(BaseModel):
    order_status: Literal["Processing", "Shipped", "Delivered", "Cancelled"]


@app.post("/api/v1/order/new", status_code=201)
def create_order(payload: CreateOrderPayload, user: dict = Depends(get_current_user), database=Depends(get_db)):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    # Build order with current prices
    order_items: List[OrderItem] = []
    total = 0.0
    for item in payload.items:
        prod = database["product"].find_one({"_id": _oid(item.product_id)})
        if not prod:
            raise HTTPException(status_code=400, detail="Product not available")
        qty = max(1, int(item.quantity))
        if prod.get("stock", 0) < qty:
            raise HTTPException(status_code=400, detail=f"Not enough stock for {prod.get('name')}")
        price = float(prod.get("price", 0))
        total += price * qty
        order_items.append(OrderItem(product_id=str(prod["_id"]), name=prod.get("name", ""), quantity=qty, price=price))
    order = Order(user_id=str(user["_id"]), order_items=order_items, total_price=total,
                  created_at=datetime.now(timezone.utc))
    order_id = create_document("order", order)
    for item in order_items:
        database["product"].update_one({"_id": ObjectId(item.product_id)}, {"$inc": {"stock": -item.quantity}})
    return {"success": True, "order": {"_id": order_id, "total_price": round(total, 2)}}


@app.get("/api/v1/orders/me")
def my_orders(user: dict = Depends(get_current_user), database=Depends(get_db)):
    return {"success": True, "orders": _stringify(get_documents("order", {"user_id": str(user["_id"])}))}


@app.get("/api/v1/admin/orders", dependencies=[Depends(require_admin)])
def admin_orders(database=Depends(get_db)):
    orders = _stringify(get_documents("order"))
    total_amount = sum(float(o.get("total_price") or 0) for o in orders)
    return {"success": True, "total_amount": total_amount, "orders": orders}


@app.put("/api/v1/admin/order/{order_id}", dependencies=[Depends(require_admin)])
def update_order(order_id: str, payload: OrderStatusPayload, database=Depends(get_db)):
    res = database["order"].update_one({"_id": _oid(order_id)},
                                       {"$set": {"order_status": payload.order_status}, "$currentDate": {"updated_at": True}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True}


@app.delete("/api/v1/admin/order/{order_id}", dependencies=[Depends(require_admin)])
def delete_order(order_id: str, database=Depends(get_db)):
    res = database["order"].delete_one({"_id": _oid(order_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True}


# Dashboard
@app.get("/api/v1/admin/product-sales", dependencies=[Depends(require_admin)])
def product_sales(database=Depends(get_db)):
    shares = product_sales_share(get_documents("order"))
    return {"success": True, "total_percentage": [{"name": s.name, "percent": s.percent} for s in shares]}


@app.get("/api/v1/admin/sales-per-month", dependencies=[Depends(require_admin)])
def monthly_sales(database=Depends(get_db)):
    months = sales_per_month(get_documents("order"))
    return {"success": True, "sales_per_month": [{"month": m.month, "total": m.total} for m in months]}


def load_dashboard_snapshot(database=Depends(get_db)) -> DashboardSnapshot:
    users = [public_account(u) for u in get_documents("user")]
    return build_snapshot(get_documents("product"), get_documents("order"), users)


@app.get("/api/v1/admin/dashboard", dependencies=[Depends(require_admin)])
def dashboard(start: Optional[date] = None, end: Optional[date] = None,
              snapshot: DashboardSnapshot = Depends(load_dashboard_snapshot)):
    view = apply_date_range(snapshot, start, end)
    return {"success": True, **view_to_dict(view)}


@app.get("/api/v1/admin/dashboard/report", dependencies=[Depends(require_admin)])
def dashboard_report(start: Optional[date] = None, end: Optional[date] = None, summary: bool = True,
                     products: bool = True, monthly: bool = True, orders: bool = True,
                     snapshot: DashboardSnapshot = Depends(load_dashboard_snapshot)):
    view = apply_date_range(snapshot, start, end)
    sections = ReportSections(summary=summary, products=products, monthly=monthly, orders=orders)
    layout = build_report(view, sections, today=datetime.now(timezone.utc).date())
    return Response(
        content=render_pdf(layout),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{layout.filename}"'},
    )


# Demo data
FLOWERS = ["Red Roses", "White Lilies", "Sunflowers", "Tulip Bouquet", "Orchid Pot", "Peonies",
           "Lavender Bundle", "Daisy Basket", "Carnations", "Hydrangea"]


@app.post("/api/v1/admin/seed")
def seed_data(database=Depends(get_db)):
    from faker import Faker
    fake = Faker()
    created = {"users": 0, "products": 0, "orders": 0}
    # Ensure one admin
    if not database["user"].find_one({"role": "admin"}):
        admin = User(name="Admin", email=config.SEED_ADMIN_EMAIL,
                     password_hash=hash_password(config.SEED_ADMIN_PASSWORD), role="admin", is_verified=True)
        create_document("user", admin)
        created["users"] += 1
    # Create 25 customers if not present
    existing_count = database["user"].count_documents({"role": "user"})
    for _ in range(max(0, 25 - existing_count)):
        user = User(name=fake.name(), email=fake.unique.email(), password_hash=hash_password("Password@123"),
                    role="user", is_verified=True)
        create_document("user", user)
        created["users"] += 1

    if database["product"].count_documents({}) == 0:
        for name in FLOWERS:
            product = Product(name=name, description=fake.sentence(), price=round(random.uniform(5, 80), 2),
                              stock=random.randint(0, 40), category="Flowers")
            create_document("product", product)
            created["products"] += 1

    if database["order"].count_documents({}) == 0:
        products = list(database["product"].find({}))
        customers = list(database["user"].find({"role": "user"}))
        for _ in range(60):
            picked = random.sample(products, k=min(len(products), random.randint(1, 3)))
            items = [OrderItem(product_id=str(p["_id"]), name=p["name"], quantity=random.randint(1, 4),
                               price=p["price"]) for p in picked]
            order = Order(
                user_id=str(random.choice(customers)["_id"]),
                order_items=items,
                total_price=sum(i.price * i.quantity for i in items),
                order_status=random.choice(["Processing", "Shipped", "Delivered", "Cancelled"]),
                created_at=fake.date_time_between(start_date="-1y", tzinfo=timezone.utc),
            )
            create_document("order", order)
            created["orders"] += 1
    return {"success": True, "created": created}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
