import csv
import hashlib
import io
import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from bson import ObjectId

import database
from database import create_document, ensure_indexes, get_documents, now, store_errors, with_id
from cart import Cart
from catalog import CatalogSelector
from errors import Conflict, GiftingError, NotFound, StoreUnavailable
from ledger import PointsLedger
from orders import OrderRepository, OrderService
from schemas import (
    User, UserLogin, TokenResponse,
    ProductCreate, ProductUpdate, Product,
    TenantCreate, TenantUpdate, ProductSelection, Tenant,
    EmployeeCreate, EmployeeImport, PointsGrant, Employee,
    ShippingAddress, CheckoutPayload, OrderStatusUpdate,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("gifting")

TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", "7"))


def ensure_admin(db: Database) -> None:
    """Seed the gifting-company admin account from ADMIN_EMAIL / ADMIN_PASSWORD."""
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return
    if db["user"].find_one({"email": email, "role": "admin"}):
        return
    pw_hash, salt = hash_password(password)
    create_document("user", User(email=email, password_hash=pw_hash, salt=salt, role="admin"), database=db)
    logger.info("seeded admin account %s", email)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
            ensure_admin(database.db)
        except Exception:
            logger.exception("database initialisation failed")
    yield


app = FastAPI(title="Corporate Gifting API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GiftingError)
async def gifting_error_handler(request: Request, exc: GiftingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("%s %s: store failure: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": StoreUnavailable.__doc__, "code": StoreUnavailable.code})


# -------------------- Helpers --------------------

def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.sha256((salt + password).encode()).hexdigest()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return secrets.compare_digest(h, expected_hash)


def issue_token(db: Database, user: dict) -> TokenResponse:
    token = secrets.token_urlsafe(32)
    expires = datetime.now(timezone.utc) + timedelta(days=TOKEN_TTL_DAYS)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"token": token, "token_expires": expires}})
    return TokenResponse(access_token=token, role=user["role"])


def get_db() -> Database:
    if database.db is None:
        raise StoreUnavailable("Database not configured")
    return database.db


class AuthUser(BaseModel):
    """The authenticated principal handed to every core call."""
    id: str
    email: EmailStr
    role: str
    tenant_id: Optional[str] = None
    employee_id: Optional[str] = None


def get_user_by_token(db: Database, token: str) -> Optional[dict]:
    user = db["user"].find_one({"token": token})
    if not user:
        return None
    expires = user.get("token_expires")
    if expires is None:
        return None
    # pymongo hands back naive UTC datetimes
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return user if expires > datetime.now(timezone.utc) else None


async def auth_dependency(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> AuthUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    token = authorization.split(" ", 1)[1]
    with store_errors("token lookup"):
        user = get_user_by_token(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return AuthUser(
        id=str(user["_id"]),
        email=user["email"],
        role=user["role"],
        tenant_id=user.get("tenant_id"),
        employee_id=user.get("employee_id"),
    )


def require_admin(user: AuthUser = Depends(auth_dependency)) -> AuthUser:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def require_corporate(user: AuthUser = Depends(auth_dependency)) -> AuthUser:
    if user.role != "corporate" or not user.tenant_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def get_catalog(db: Database = Depends(get_db)) -> CatalogSelector:
    return CatalogSelector(db)


def get_ledger(db: Database = Depends(get_db)) -> PointsLedger:
    return PointsLedger(db)


def get_orders(db: Database = Depends(get_db)) -> OrderRepository:
    return OrderRepository(db)


def get_order_service(
    db: Database = Depends(get_db),
    catalog: CatalogSelector = Depends(get_catalog),
    ledger: PointsLedger = Depends(get_ledger),
    orders: OrderRepository = Depends(get_orders),
) -> OrderService:
    return OrderService(db, catalog, ledger, orders)


def approved_tenant(user: AuthUser = Depends(require_corporate), catalog: CatalogSelector = Depends(get_catalog)) -> Tenant:
    tenant = catalog.get_tenant(user.tenant_id)
    if tenant.status != "approved":
        raise HTTPException(status_code=403, detail="Company account is awaiting approval")
    return tenant


def tenant_employee(db: Database, tenant_id: str, employee_id: str) -> Employee:
    doc = db["employee"].find_one({"_id": to_object_id(employee_id), "tenant_id": tenant_id})
    if not doc:
        raise NotFound("Employee not found")
    return Employee.model_validate(with_id(doc))


# -------------------- Health & Test --------------------

@app.get("/")
def read_root():
    return {"message": "Corporate Gifting API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = database.db
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# -------------------- Reference data --------------------

COUNTRIES = [
    {"name": "United States", "code": "US", "phone_code": "+1"},
    {"name": "United Kingdom", "code": "GB", "phone_code": "+44"},
    {"name": "Canada", "code": "CA", "phone_code": "+1"},
    {"name": "Australia", "code": "AU", "phone_code": "+61"},
    {"name": "Germany", "code": "DE", "phone_code": "+49"},
    {"name": "France", "code": "FR", "phone_code": "+33"},
    {"name": "India", "code": "IN", "phone_code": "+91"},
    {"name": "Japan", "code": "JP", "phone_code": "+81"},
    {"name": "China", "code": "CN", "phone_code": "+86"},
    {"name": "Brazil", "code": "BR", "phone_code": "+55"},
    {"name": "Mexico", "code": "MX", "phone_code": "+52"},
    {"name": "Spain", "code": "ES", "phone_code": "+34"},
    {"name": "Italy", "code": "IT", "phone_code": "+39"},
    {"name": "Netherlands", "code": "NL", "phone_code": "+31"},
    {"name": "Sweden", "code": "SE", "phone_code": "+46"},
    {"name": "Norway", "code": "NO", "phone_code": "+47"},
    {"name": "Denmark", "code": "DK", "phone_code": "+45"},
    {"name": "Finland", "code": "FI", "phone_code": "+358"},
    {"name": "Switzerland", "code": "CH", "phone_code": "+41"},
    {"name": "Austria", "code": "AT", "phone_code": "+43"},
    {"name": "Belgium", "code": "BE", "phone_code": "+32"},
    {"name": "Ireland", "code": "IE", "phone_code": "+353"},
    {"name": "Portugal", "code": "PT", "phone_code": "+351"},
    {"name": "Greece", "code": "GR", "phone_code": "+30"},
    {"name": "Singapore", "code": "SG", "phone_code": "+65"},
    {"name": "United Arab Emirates", "code": "AE", "phone_code": "+971"},
]


@app.get("/reference/countries", response_model=List[dict])
def list_countries():
    return COUNTRIES


# -------------------- Auth --------------------

@app.post("/auth/login", response_model=TokenResponse)
def login(payload: UserLogin, db: Database = Depends(get_db)):
    """Login for the gifting admin and corporate accounts."""
    user = db["user"].find_one({"email": payload.email, "role": {"$in": ["admin", "corporate"]}})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user.get("salt", ""), user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return issue_token(db, user)


@app.get("/me", response_model=AuthUser)
def me(user: AuthUser = Depends(auth_dependency)):
    return user


@app.post("/corporate/register", response_model=dict)
def register_corporate(payload: TenantCreate, db: Database = Depends(get_db)):
    if db["tenant"].find_one({"slug": payload.slug}):
        raise HTTPException(status_code=400, detail="Slug already in use")
    if db["user"].find_one({"email": payload.email, "role": "corporate"}):
        raise HTTPException(status_code=400, detail="Email already registered")
    tenant_doc = {
        "name": payload.name,
        "slug": payload.slug,
        "status": "pending",
        "contact_email": payload.email,
        "selected_product_ids": [],
        "branding": {"primary_color": "#2563eb", "secondary_color": "#f59e0b"},
    }
    try:
        tenant_id = create_document("tenant", tenant_doc, database=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Slug already in use")
    pw_hash, salt = hash_password(payload.password)
    create_document("user", User(email=payload.email, password_hash=pw_hash, salt=salt, role="corporate", tenant_id=tenant_id), database=db)
    logger.info("tenant %s registered (%s), awaiting approval", payload.slug, tenant_id)
    return {"id": tenant_id, "name": payload.name, "slug": payload.slug, "status": "pending"}


# -------------------- Admin: Products --------------------

@app.post("/admin/products", response_model=Product)
def create_product(payload: ProductCreate, db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    pid = create_document("product", payload, database=db)
    return Product(id=pid, **payload.model_dump())


@app.get("/admin/products", response_model=List[Product])
def list_products(q: Optional[str] = Query(None), db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    filter_query = {}
    if q:
        filter_query["name"] = {"$regex": q, "$options": "i"}
    products = db["product"].find(filter_query).sort("created_at", -1)
    return [Product.model_validate(with_id(p)) for p in products]


@app.patch("/admin/products/{product_id}", response_model=Product)
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    prod = db["product"].find_one({"_id": to_object_id(product_id)})
    if not prod:
        raise HTTPException(status_code=404, detail="Product not found")
    update = payload.model_dump(exclude_unset=True)
    # stock may be cleared to null (unlimited); everything else ignores nulls
    update = {k: v for k, v in update.items() if v is not None or k == "stock"}
    update["updated_at"] = now()
    db["product"].update_one({"_id": prod["_id"]}, {"$set": update})
    new_doc = db["product"].find_one({"_id": prod["_id"]})
    return Product.model_validate(with_id(new_doc))


@app.delete("/admin/products/{product_id}", response_model=dict)
def delete_product(product_id: str, db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    prod = db["product"].find_one({"_id": to_object_id(product_id)})
    if not prod:
        raise HTTPException(status_code=404, detail="Product not found")
    db["product"].delete_one({"_id": prod["_id"]})
    db["tenant"].update_many({"selected_product_ids": product_id}, {"$pull": {"selected_product_ids": product_id}})
    return {"ok": True}


# -------------------- Admin: Tenants --------------------

@app.get("/admin/tenants", response_model=List[Tenant])
def list_tenants(status: Optional[str] = Query(None), db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    query = {"status": status} if status else {}
    tenants = get_documents("tenant", query, database=db)
    return [Tenant.model_validate(with_id(t)) for t in tenants]


def decide_tenant(db: Database, tenant_id: str, status: str) -> Tenant:
    res = db["tenant"].update_one(
        {"_id": to_object_id(tenant_id), "status": "pending"},
        {"$set": {"status": status, "updated_at": now()}},
    )
    if res.matched_count == 0:
        if not db["tenant"].find_one({"_id": to_object_id(tenant_id)}):
            raise NotFound("Tenant not found")
        raise Conflict("Only pending companies can be approved or rejected")
    logger.info("tenant %s %s", tenant_id, status)
    return CatalogSelector(db).get_tenant(tenant_id)


@app.post("/admin/tenants/{tenant_id}/approve", response_model=Tenant)
def approve_tenant(tenant_id: str, db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    return decide_tenant(db, tenant_id, "approved")


@app.post("/admin/tenants/{tenant_id}/reject", response_model=Tenant)
def reject_tenant(tenant_id: str, db: Database = Depends(get_db), user: AuthUser = Depends(require_admin)):
    return decide_tenant(db, tenant_id, "rejected")


# -------------------- Admin: Orders --------------------

@app.get("/admin/orders", response_model=List[dict])
def admin_list_orders(status: Optional[str] = Query(None), orders: OrderRepository = Depends(get_orders), user: AuthUser = Depends(require_admin)):
    return [o.model_dump() for o in orders.list_by_status(status)]


@app.patch("/admin/orders/{order_id}/status", response_model=dict)
def update_order_status(order_id: str, payload: OrderStatusUpdate, orders: OrderRepository = Depends(get_orders), user: AuthUser = Depends(require_admin)):
    return orders.update_status(order_id, payload.status).model_dump()


# -------------------- Corporate --------------------

@app.get("/corporate/tenant", response_model=Tenant)
def get_own_tenant(user: AuthUser = Depends(require_corporate), catalog: CatalogSelector = Depends(get_catalog)):
    return catalog.get_tenant(user.tenant_id)


@app.patch("/corporate/tenant", response_model=Tenant)
def update_own_tenant(payload: TenantUpdate, db: Database = Depends(get_db), user: AuthUser = Depends(require_corporate), catalog: CatalogSelector = Depends(get_catalog)):
    tenant = catalog.get_tenant(user.tenant_id)
    update = {}
    if payload.name is not None:
        update["name"] = payload.name
    if payload.branding is not None:
        update["branding"] = payload.branding.model_dump()
    if payload.slug is not None and payload.slug != tenant.slug:
        if tenant.status == "approved":
            raise Conflict("Slug cannot change once the sub-page is published")
        if db["tenant"].find_one({"slug": payload.slug}):
            raise HTTPException(status_code=400, detail="Slug already in use")
        update["slug"] = payload.slug
    if update:
        update["updated_at"] = now()
        try:
            db["tenant"].update_one({"_id": to_object_id(tenant.id)}, {"$set": update})
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Slug already in use")
    return catalog.get_tenant(tenant.id)


@app.get("/corporate/catalog", response_model=List[Product])
def corporate_catalog(db: Database = Depends(get_db), user: AuthUser = Depends(require_corporate)):
    """The global catalog a company picks its sub-page products from."""
    products = db["product"].find({"active": True}).sort("created_at", -1)
    return [Product.model_validate(with_id(p)) for p in products]


@app.put("/corporate/products", response_model=Tenant)
def select_products(payload: ProductSelection, db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant), catalog: CatalogSelector = Depends(get_catalog)):
    ids = list(dict.fromkeys(payload.product_ids))
    oids = [to_object_id(i) for i in ids]
    found = {str(d["_id"]) for d in db["product"].find({"_id": {"$in": oids}}, {"_id": 1})}
    unknown = [i for i in ids if i not in found]
    if unknown:
        raise NotFound(f"Unknown products: {', '.join(unknown)}")
    db["tenant"].update_one({"_id": to_object_id(tenant.id)}, {"$set": {"selected_product_ids": ids, "updated_at": now()}})
    return catalog.get_tenant(tenant.id)


@app.post("/corporate/employees", response_model=Employee)
def create_employee(payload: EmployeeCreate, db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant)):
    doc = {"tenant_id": tenant.id, **payload.model_dump()}
    try:
        eid = create_document("employee", doc, database=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Employee already exists")
    return Employee(id=eid, **doc)


def parse_employee_csv(text: str):
    """Rows of email,name[,points]. Returns (valid payloads, [(line, error)])."""
    valid, errors = [], []
    for lineno, row in enumerate(csv.reader(io.StringIO(text)), start=1):
        row = [c.strip() for c in row]
        if not any(row):
            continue
        if len(row) < 2:
            errors.append({"line": lineno, "error": "expected email,name[,points]"})
            continue
        data = {"email": row[0], "name": row[1]}
        if len(row) > 2 and row[2]:
            data["points"] = row[2]
        try:
            valid.append((lineno, EmployeeCreate(**data)))
        except ValidationError as e:
            errors.append({"line": lineno, "error": e.errors()[0]["msg"]})
    return valid, errors


@app.post("/corporate/employees/import", response_model=dict)
def import_employees(payload: EmployeeImport, db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant)):
    valid, errors = parse_employee_csv(payload.csv)
    created, skipped = [], []
    for lineno, emp in valid:
        try:
            eid = create_document("employee", {"tenant_id": tenant.id, **emp.model_dump()}, database=db)
            created.append(eid)
        except DuplicateKeyError:
            skipped.append({"line": lineno, "email": emp.email})
    logger.info("tenant %s imported %s employees (%s skipped, %s invalid)", tenant.id, len(created), len(skipped), len(errors))
    return {"created": len(created), "ids": created, "skipped": skipped, "errors": errors}


@app.get("/corporate/employees", response_model=List[Employee])
def list_employees(db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant)):
    employees = get_documents("employee", {"tenant_id": tenant.id}, database=db)
    return [Employee.model_validate(with_id(e)) for e in employees]


@app.delete("/corporate/employees/{employee_id}", response_model=dict)
def delete_employee(employee_id: str, db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant)):
    employee = tenant_employee(db, tenant.id, employee_id)
    db["employee"].delete_one({"_id": to_object_id(employee.id)})
    db["user"].delete_many({"employee_id": employee.id, "role": "employee"})
    db["address"].delete_one({"employee_id": employee.id})
    return {"ok": True}


@app.post("/corporate/employees/{employee_id}/points", response_model=dict)
def grant_points(employee_id: str, payload: PointsGrant, db: Database = Depends(get_db), tenant: Tenant = Depends(approved_tenant), ledger: PointsLedger = Depends(get_ledger)):
    employee = tenant_employee(db, tenant.id, employee_id)
    balance = ledger.credit(employee.id, payload.amount)
    return {"id": employee.id, "points": balance}


@app.get("/corporate/orders", response_model=List[dict])
def corporate_orders(status: Optional[str] = Query(None), user: AuthUser = Depends(require_corporate), orders: OrderRepository = Depends(get_orders)):
    return [o.model_dump() for o in orders.list_by_tenant(user.tenant_id, status)]


# -------------------- Storefront --------------------

class EmployeeRegister(BaseModel):
    email: EmailStr
    password: str


def storefront_employee(slug: str, user: AuthUser = Depends(auth_dependency), catalog: CatalogSelector = Depends(get_catalog)) -> AuthUser:
    tenant = catalog.get_tenant_by_slug(slug)
    if user.role != "employee" or user.tenant_id != tenant.id or not user.employee_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


@app.get("/company/{slug}", response_model=dict)
def storefront(slug: str, catalog: CatalogSelector = Depends(get_catalog)):
    tenant = catalog.get_tenant_by_slug(slug)
    products = catalog.list_visible_products(tenant.id)
    return {
        "name": tenant.name,
        "slug": tenant.slug,
        "branding": tenant.branding.model_dump(),
        "products": [p.model_dump() for p in products],
    }


@app.post("/company/{slug}/register", response_model=TokenResponse)
def register_employee(slug: str, payload: EmployeeRegister, db: Database = Depends(get_db), catalog: CatalogSelector = Depends(get_catalog)):
    tenant = catalog.get_tenant_by_slug(slug)
    employee = db["employee"].find_one({"tenant_id": tenant.id, "email": payload.email})
    if not employee:
        raise HTTPException(status_code=403, detail="You are not registered as an employee of this company")
    if db["user"].find_one({"email": payload.email, "role": "employee", "tenant_id": tenant.id}):
        raise HTTPException(status_code=400, detail="Account already exists, please log in")
    pw_hash, salt = hash_password(payload.password)
    account = User(email=payload.email, password_hash=pw_hash, salt=salt, role="employee", tenant_id=tenant.id, employee_id=str(employee["_id"]))
    try:
        create_document("user", account, database=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Account already exists, please log in")
    user = db["user"].find_one({"email": payload.email, "role": "employee", "tenant_id": tenant.id})
    return issue_token(db, user)


@app.post("/company/{slug}/login", response_model=TokenResponse)
def login_employee(slug: str, payload: UserLogin, db: Database = Depends(get_db), catalog: CatalogSelector = Depends(get_catalog)):
    tenant = catalog.get_tenant_by_slug(slug)
    user = db["user"].find_one({"email": payload.email, "role": "employee", "tenant_id": tenant.id})
    if not user or not verify_password(payload.password, user.get("salt", ""), user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return issue_token(db, user)


@app.get("/company/{slug}/me", response_model=Employee)
def storefront_me(db: Database = Depends(get_db), user: AuthUser = Depends(storefront_employee)):
    return tenant_employee(db, user.tenant_id, user.employee_id)


@app.get("/company/{slug}/address", response_model=Optional[ShippingAddress])
def get_address(db: Database = Depends(get_db), user: AuthUser = Depends(storefront_employee)):
    doc = db["address"].find_one({"employee_id": user.employee_id})
    return ShippingAddress.model_validate(doc) if doc else None


@app.put("/company/{slug}/address", response_model=ShippingAddress)
def save_address(payload: ShippingAddress, db: Database = Depends(get_db), user: AuthUser = Depends(storefront_employee)):
    db["address"].update_one(
        {"employee_id": user.employee_id},
        {"$set": {**payload.model_dump(), "employee_id": user.employee_id, "updated_at": now()}},
        upsert=True,
    )
    return payload


@app.post("/company/{slug}/checkout", response_model=dict)
def checkout(
    slug: str,
    payload: CheckoutPayload,
    idempotency_key: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    user: AuthUser = Depends(storefront_employee),
    catalog: CatalogSelector = Depends(get_catalog),
    service: OrderService = Depends(get_order_service),
):
    visible = {p.id: p for p in catalog.list_visible_products(user.tenant_id)}
    cart = Cart()
    for line in payload.items:
        # unknown ids stay in the cart so checkout reports them as a catalog mismatch
        product = visible.get(line.product_id) or Product(id=line.product_id, name=line.product_id, point_cost=0)
        cart.add(product, line.quantity)
    address = payload.shipping_address
    if address is None:
        saved = db["address"].find_one({"employee_id": user.employee_id})
        address = ShippingAddress.model_validate(saved) if saved else None
    order = service.checkout(user.employee_id, cart, address, request_id=idempotency_key)
    return order.model_dump()


@app.get("/company/{slug}/orders", response_model=List[dict])
def my_orders(user: AuthUser = Depends(storefront_employee), orders: OrderRepository = Depends(get_orders)):
    return [o.model_dump() for o in orders.list_by_employee(user.employee_id)]


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
