import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database as MongoDatabase
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import CARTS, PRODUCTS, USERS, Database
from schemas import AdminLogin, Cart as CartSchema, Product as ProductSchema, ProductUpdate, PublishToggle, User as UserSchema

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

ADMIN_PREFIX = "/admin"
LOGIN_PATH = "/admin/login"
ADMIN_COOKIE = "admin_jwt"
ADMIN_COOKIE_SECURE = os.getenv("ADMIN_COOKIE_SECURE", "false").lower() in ("1", "true", "yes")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # stored value is not a hash passlib recognises
        logger.warning("Unrecognised password hash format")
        return False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected admin token: %s", exc)
        return None


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def parse_object_id(product_id: str) -> ObjectId:
    try:
        return ObjectId(product_id)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid product id")


def now() -> datetime:
    return datetime.now(timezone.utc)


# Admin gate

def is_protected_path(path: str) -> bool:
    if path != ADMIN_PREFIX and not path.startswith(ADMIN_PREFIX + "/"):
        return False
    return path != LOGIN_PATH and not path.startswith(LOGIN_PATH + "/")


def admin_tokens_from(request: Request) -> List[str]:
    tokens = []
    cookie = request.cookies.get(ADMIN_COOKIE)
    if cookie:
        tokens.append(cookie)
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        tokens.append(authorization.split(" ", 1)[1])
    return tokens


def is_admin_token(token: Optional[str]) -> bool:
    if not token:
        return False
    payload = decode_token(token)
    return bool(payload) and payload.get("role") == "admin"


def bootstrap_admin(db: MongoDatabase, email: Optional[str] = None, password: Optional[str] = None) -> bool:
    """Create the configured admin account unless a user with that email exists."""
    email = (email or ADMIN_EMAIL or "").strip().lower()
    password = password or ADMIN_PASSWORD
    if not email or not password:
        return False
    if db[USERS].find_one({"email": email}):
        return False
    user = UserSchema(uid=email, email=email, displayName="Admin", role="admin", password=hash_password(password))
    db[USERS].insert_one({**user.model_dump(), "createdAt": now()})
    logger.info("Created admin user %s", email)
    return True


# Dependencies

def get_db(request: Request) -> MongoDatabase:
    return request.app.state.database.connect()


LOGIN_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>Admin Login</title></head>
<body>
  <h1>Admin Login</h1>
  <form id="login">
    <label>Username <input name="username" required></label>
    <label>Password <input name="password" type="password" required></label>
    <button type="submit">Login</button>
  </form>
  <p id="error"></p>
  <script>
    document.getElementById("login").addEventListener("submit", async (e) => {
      e.preventDefault();
      const form = new FormData(e.target);
      const res = await fetch("/api/admin/login", {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify({username: form.get("username"), password: form.get("password")}),
      });
      if (res.ok) { window.location.href = "/admin"; }
      else { document.getElementById("error").textContent = "Invalid credentials"; }
    });
  </script>
</body>
</html>
"""


def create_app(database: Optional[Database] = None) -> FastAPI:
    database = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = await run_in_threadpool(database.init)
        try:
            await run_in_threadpool(bootstrap_admin, db)
        except PyMongoError as exc:
            logger.warning("Unable to create admin user: %s", exc)
        try:
            yield
        finally:
            database.close()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def admin_gate(request: Request, call_next):
        if is_protected_path(request.url.path) and not any(is_admin_token(t) for t in admin_tokens_from(request)):
            logger.debug("Redirecting unauthenticated request for %s", request.url.path)
            return RedirectResponse(url=LOGIN_PATH)
        return await call_next(request)

    # Errors

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
        return JSONResponse({"error": "Invalid request: " + "; ".join(problems)}, status_code=400)

    @app.exception_handler(PyMongoError)
    async def database_error(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    # Routes
    @app.get("/")
    def read_root():
        return {"message": "Storefront API"}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": database.name,
            "connection_status": "Not Connected",
            "collections": []
        }
        try:
            db = database.connect()
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            logger.warning("Database check failed: %s", e)
            response["database"] = f"❌ Error: {str(e)[:80]}"
        return response

    # Products
    @app.get("/api/products")
    def list_products(db: MongoDatabase = Depends(get_db)):
        return [serialize_doc(d) for d in db[PRODUCTS].find({})]

    @app.post("/api/products", status_code=201)
    def create_product(data: ProductSchema, db: MongoDatabase = Depends(get_db)):
        doc = data.model_dump()
        doc["createdAt"] = doc["updatedAt"] = now()
        res = db[PRODUCTS].insert_one(doc)
        created = db[PRODUCTS].find_one({"_id": res.inserted_id})
        logger.info("Created product %s", res.inserted_id)
        return serialize_doc(created)

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, db: MongoDatabase = Depends(get_db)):
        product = db[PRODUCTS].find_one({"_id": parse_object_id(product_id)})
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return serialize_doc(product)

    @app.put("/api/products/{product_id}")
    def update_product(product_id: str, data: ProductUpdate, db: MongoDatabase = Depends(get_db)):
        obj_id = parse_object_id(product_id)
        update_dict = data.model_dump(exclude_unset=True)
        if not update_dict:
            raise HTTPException(status_code=400, detail="No fields to update")
        if "imagesByColor" in update_dict or "colors" in update_dict:
            current = db[PRODUCTS].find_one({"_id": obj_id})
            if not current:
                raise HTTPException(status_code=404, detail="Product not found")
            merged = {**current, **update_dict}
            unknown = sorted(set(merged.get("imagesByColor") or {}) - set(merged.get("colors") or []))
            if unknown:
                raise HTTPException(
                    status_code=400,
                    detail=f"imagesByColor has colors not listed in colors: {', '.join(unknown)}",
                )
        update_dict["updatedAt"] = now()
        product = db[PRODUCTS].find_one_and_update(
            {"_id": obj_id}, {"$set": update_dict}, return_document=ReturnDocument.AFTER
        )
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return serialize_doc(product)

    @app.delete("/api/products/{product_id}")
    def delete_product(product_id: str, db: MongoDatabase = Depends(get_db)):
        res = db[PRODUCTS].delete_one({"_id": parse_object_id(product_id)})
        if res.deleted_count == 0:
            raise HTTPException(status_code=404, detail="Product not found")
        logger.info("Deleted product %s", product_id)
        return {"success": True}

    @app.patch("/api/products/{product_id}/toggle")
    def toggle_product(product_id: str, data: PublishToggle, db: MongoDatabase = Depends(get_db)):
        product = db[PRODUCTS].find_one_and_update(
            {"_id": parse_object_id(product_id)},
            {"$set": {"published": data.published, "updatedAt": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return serialize_doc(product)

    # Cart
    @app.get("/api/cart")
    def get_cart(userId: Optional[str] = Query(None), db: MongoDatabase = Depends(get_db)):
        if not userId:
            raise HTTPException(status_code=400, detail="Missing userId")
        cart = db[CARTS].find_one({"userId": userId})
        return serialize_doc(cart) if cart else {"userId": userId, "items": []}

    @app.post("/api/cart")
    def save_cart(data: CartSchema, db: MongoDatabase = Depends(get_db)):
        # items are replaced wholesale; the client owns add/remove
        cart = db[CARTS].find_one_and_update(
            {"userId": data.userId},
            {"$set": {"items": [item.model_dump() for item in data.items], "updatedAt": now()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(cart)

    # Admin auth
    @app.post("/api/admin/login")
    def admin_login(payload: AdminLogin, response: Response, db: MongoDatabase = Depends(get_db)):
        username = payload.username.strip()
        user = db[USERS].find_one({"$or": [{"email": username.lower()}, {"uid": username}]})
        hashed = user.get("password") if user else None
        if not hashed or user.get("role") != "admin" or not verify_password(payload.password, hashed):
            logger.warning("Failed admin login for %s", username)
            raise HTTPException(status_code=401, detail="Invalid credentials")
        token = create_access_token({"sub": user["uid"], "role": "admin"})
        response.set_cookie(
            ADMIN_COOKIE,
            token,
            max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            httponly=True,
            samesite="lax",
            secure=ADMIN_COOKIE_SECURE,
        )
        return {"success": True}

    @app.post("/api/admin/logout")
    def admin_logout(response: Response):
        response.delete_cookie(ADMIN_COOKIE)
        return {"success": True}

    # Admin pages
    @app.get(LOGIN_PATH, response_class=HTMLResponse)
    def login_page():
        return LOGIN_PAGE

    @app.get(ADMIN_PREFIX)
    def admin_dashboard(db: MongoDatabase = Depends(get_db)):
        total = db[PRODUCTS].count_documents({})
        published = db[PRODUCTS].count_documents({"published": True})
        return {"total": total, "published": published, "drafts": total - published}

    @app.get(ADMIN_PREFIX + "/products")
    def admin_products(db: MongoDatabase = Depends(get_db)):
        return [serialize_doc(d) for d in db[PRODUCTS].find({})]

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
