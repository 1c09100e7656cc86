import os
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from slugify import slugify

import accounts
import catalog
import database
import orders
from database import create_document, get_db, serialize, serialize_many
from errors import ServiceError, persistence_guard, service_error_handler
from payments import get_gateway
from schemas import (
    CategoryRequest,
    FilterRequest,
    ForgotPasswordRequest,
    LoginRequest,
    OrderStatusUpdate,
    PaymentRequest,
    Photo,
    Product,
    ProfileUpdate,
    RegisterRequest,
    Role,
)
from security import get_current_user, hash_password, require_admin

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

API = "/api/v1"

# FastAPI app
app = FastAPI(title="Storefront API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(ServiceError, service_error_handler)


def _photo(upload: Optional[UploadFile]) -> Optional[Photo]:
    if upload is None or not upload.filename:
        return None
    return Photo(data=upload.file.read(), content_type=upload.content_type or "application/octet-stream")


def _product_fields(name, description, price, category, quantity, shipping) -> dict:
    return {
        "name": name,
        "description": description,
        "price": price,
        "category": category,
        "quantity": quantity,
        "shipping": shipping,
    }


# Auth
@app.post(f"{API}/auth/register")
def register(body: RegisterRequest, db: Database = Depends(get_db)):
    with persistence_guard("Error in Registration"):
        user, created = accounts.register(db, body)
    if not created:
        return {"success": False, "message": "Already Registered. Please login"}
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "message": "User Register Successfully", "user": accounts.public_user(user)},
    )


@app.post(f"{API}/auth/login")
def login(body: LoginRequest, db: Database = Depends(get_db)):
    with persistence_guard("Error in login"):
        user, token = accounts.login(db, body.email, body.password)
    if token is None:
        return {"success": False, "message": "Invalid Password"}
    return {"success": True, "message": "login successfully", "user": accounts.public_user(user), "token": token}


@app.post(f"{API}/auth/forgot-password")
def forgot_password(body: ForgotPasswordRequest, db: Database = Depends(get_db)):
    with persistence_guard("Something went wrong"):
        accounts.forgot_password(db, body)
    return {"success": True, "message": "Password Reset Successfully"}


@app.get(f"{API}/auth/test")
def protected_test(current_user: dict = Depends(require_admin)):
    return "Protected Routes"


@app.get(f"{API}/auth/user-auth")
def user_auth(current_user: dict = Depends(get_current_user)):
    return {"ok": True}


@app.get(f"{API}/auth/admin-auth")
def admin_auth(current_user: dict = Depends(require_admin)):
    return {"ok": True}


@app.put(f"{API}/auth/profile")
def update_profile(body: ProfileUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    with persistence_guard("Error While Update profile"):
        user = accounts.update_profile(db, current_user, body)
    return {"success": True, "message": "Profile Updated Successfully", "updatedUser": accounts.public_user(user)}


# Orders
@app.get(f"{API}/auth/orders")
def buyer_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    with persistence_guard("Error While Getting Orders"):
        return serialize_many(orders.buyer_orders(db, current_user["_id"]))


@app.get(f"{API}/auth/all-orders")
def all_orders(current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error While Getting Orders"):
        return serialize_many(orders.all_orders(db))


@app.put(f"{API}/auth/order-status/{{order_id}}")
def order_status(order_id: str, body: OrderStatusUpdate, current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error While Updating Order"):
        updated = orders.update_order_status(db, order_id, body.status)
    return serialize(updated) if updated else None


# Categories
@app.post(f"{API}/category/create-category")
def create_category(body: CategoryRequest, current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error in Category"):
        category, created = catalog.create_category(db, body.name)
    if not created:
        return {"success": True, "message": "Category Already Exists"}
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "message": "new category created", "category": serialize(category)},
    )


@app.put(f"{API}/category/update-category/{{category_id}}")
def update_category(category_id: str, body: CategoryRequest, current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error while updating category"):
        category = catalog.update_category(db, category_id, body.name)
    return {"success": True, "message": "Category Updated Successfully", "category": serialize(category)}


@app.get(f"{API}/category/get-category")
def get_categories(db: Database = Depends(get_db)):
    with persistence_guard("Error while getting all categories"):
        categories = catalog.list_categories(db)
    return {"success": True, "message": "All Categories List", "category": serialize_many(categories)}


@app.get(f"{API}/category/single-category/{{slug}}")
def single_category(slug: str, db: Database = Depends(get_db)):
    with persistence_guard("Error While getting Single Category"):
        category = catalog.get_category(db, slug)
    return {"success": True, "message": "Get Single Category Successfully", "category": serialize(category)}


@app.delete(f"{API}/category/delete-category/{{category_id}}")
def delete_category(category_id: str, current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error while deleting category"):
        catalog.delete_category(db, category_id)
    return {"success": True, "message": "Category Deleted Successfully"}


# Products
@app.post(f"{API}/product/create-product")
def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    quantity: Optional[int] = Form(None),
    shipping: Optional[bool] = Form(None),
    photo: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    fields = _product_fields(name, description, price, category, quantity, shipping)
    with persistence_guard("Error in creating product"):
        product = catalog.create_product(db, fields, _photo(photo))
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "message": "Product Created Successfully", "products": serialize(product)},
    )


@app.put(f"{API}/product/update-product/{{pid}}")
def update_product(
    pid: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    quantity: Optional[int] = Form(None),
    shipping: Optional[bool] = Form(None),
    photo: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    fields = _product_fields(name, description, price, category, quantity, shipping)
    with persistence_guard("Error in Update product"):
        product = catalog.update_product(db, pid, fields, _photo(photo))
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"success": True, "message": "Product Updated Successfully", "products": serialize(product)},
    )


@app.delete(f"{API}/product/delete-product/{{pid}}")
def delete_product(pid: str, current_user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    with persistence_guard("Error while deleting product"):
        catalog.delete_product(db, pid)
    return {"success": True, "message": "Product Deleted successfully"}


@app.get(f"{API}/product/get-product")
def get_products(db: Database = Depends(get_db)):
    with persistence_guard("Error in getting products"):
        products, count = catalog.list_products(db)
    return {"success": True, "message": "All Products", "products": serialize_many(products), "counTotal": count}


@app.get(f"{API}/product/get-product/{{slug}}")
def get_single_product(slug: str, db: Database = Depends(get_db)):
    with persistence_guard("Error while getting single product"):
        product = catalog.get_product_by_slug(db, slug)
    return {"success": True, "message": "Single Product Fetched", "product": serialize(product)}


@app.get(f"{API}/product/product-photo/{{pid}}")
def product_photo(pid: str, db: Database = Depends(get_db)):
    with persistence_guard("Error while getting photo"):
        data, content_type = catalog.get_product_photo(db, pid)
    return Response(content=data, media_type=content_type)


@app.post(f"{API}/product/product-filters")
def product_filters(body: FilterRequest, db: Database = Depends(get_db)):
    with persistence_guard("Error while Filtering Products"):
        products = catalog.filter_products(db, body.checked, body.radio)
    return {"success": True, "products": serialize_many(products)}


@app.get(f"{API}/product/product-count")
def product_count(db: Database = Depends(get_db)):
    with persistence_guard("Error in product count"):
        total = catalog.count_products(db)
    return {"success": True, "total": total}


@app.get(f"{API}/product/product-list/{{page}}")
def product_list(page: str, db: Database = Depends(get_db)):
    with persistence_guard("error in per page ctrl"):
        products = catalog.list_products_page(db, page)
    return {"success": True, "products": serialize_many(products)}


@app.get(f"{API}/product/search/{{keyword}}")
def search_products(keyword: str, db: Database = Depends(get_db)):
    with persistence_guard("Error In Search Product API"):
        return serialize_many(catalog.search_products(db, keyword))


@app.get(f"{API}/product/related-product/{{pid}}/{{cid}}")
def related_products(pid: str, cid: str, db: Database = Depends(get_db)):
    with persistence_guard("Error while geting related product"):
        products = catalog.related_products(db, pid, cid)
    return {"success": True, "products": serialize_many(products)}


@app.get(f"{API}/product/product-category/{{slug}}")
def product_category(slug: str, db: Database = Depends(get_db)):
    with persistence_guard("Error While Getting products"):
        category, products = catalog.products_in_category(db, slug)
    return {"success": True, "category": serialize(category), "products": serialize_many(products)}


# Payments
@app.get(f"{API}/product/braintree/token")
def braintree_token(current_user: dict = Depends(get_current_user), gateway=Depends(get_gateway)):
    return orders.client_token(gateway)


@app.post(f"{API}/product/braintree/payment")
def braintree_payment(
    body: PaymentRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    gateway=Depends(get_gateway),
):
    with persistence_guard("Error while processing payment"):
        return orders.process_payment(db, gateway, body.nonce, body.cart, current_user.get("_id"))


# Health + test
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "collections": []
    }
    try:
        if database.db is not None:
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
    except Exception as e:
        response["error"] = str(e)[:120]
    return response


@app.get('/seed/init')
def seed(db: Database = Depends(get_db)):
    with persistence_guard("Error while seeding"):
        if not db['user'].find_one({'email': 'admin@example.com'}):
            create_document(db, 'user', {
                'name': 'Admin',
                'email': 'admin@example.com',
                'password': hash_password('Admin@123'),
                'phone': '0000000000',
                'address': 'Head office',
                'answer': 'admin',
                'role': Role.ADMIN.value,
            })
        categories = ['Electronics', 'Book', 'Clothing']
        for name in categories:
            catalog.create_category(db, name)
        by_name = {c['name']: c['_id'] for c in catalog.list_categories(db)}
        sample_products: List[dict] = [
            {'name': 'Laptop', 'description': 'A powerful laptop', 'price': 1499.99, 'category': 'Electronics', 'quantity': 30, 'shipping': True},
            {'name': 'Smartphone', 'description': 'A high-end smartphone', 'price': 999.99, 'category': 'Electronics', 'quantity': 50, 'shipping': True},
            {'name': 'Textbook', 'description': 'A comprehensive textbook', 'price': 79.99, 'category': 'Book', 'quantity': 40, 'shipping': True},
            {'name': 'Novel', 'description': 'A bestselling novel', 'price': 14.99, 'category': 'Book', 'quantity': 200, 'shipping': False},
            {'name': 'NUS T-shirt', 'description': 'Plain NUS T-shirt for sale', 'price': 4.99, 'category': 'Clothing', 'quantity': 200, 'shipping': True},
        ]
        for p in sample_products:
            if not db['product'].find_one({'name': p['name']}):
                create_document(db, 'product', Product(**{**p, 'slug': slugify(p['name']), 'category': by_name[p['category']]}))
    return {'ok': True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
