"""
JSON file store: one `<table>.json` file per table under the data directory.

Same methods and rules as `storage.SqliteStore` (unique email/username, one admin,
newest-first listings), for machines where the SQLite database can't be used.
Every call reads the file fresh; writers hold a module-wide lock for the whole
read-modify-write and replace the file atomically.
"""
import json
import os
import threading
from datetime import datetime, timezone
from functools import wraps

from logger import log
from storage import (
    PRODUCT_FIELDS,
    AdminConstraintError,
    BaseStore,
    DuplicateError,
)

SECRET_FIELDS = ("password_hash", "salt")

# Reentrant: create_review and delete_product call other mutators while holding it
lock = threading.RLock()


def _locked(fn):
    """Hold the store lock across a whole read-modify-write."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        with lock:
            return fn(*args, **kwargs)
    return wrapper


def now_iso():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def next_id(rows):
    return max((r["id"] for r in rows), default=0) + 1


def newest_first(rows):
    return sorted(rows, key=lambda r: (r.get("created_at") or "", r["id"]), reverse=True)


def oldest_first(rows):
    return sorted(rows, key=lambda r: (r.get("created_at") or "", r["id"]))


def public_user(u):
    out = {k: v for k, v in u.items() if k not in SECRET_FIELDS}
    out["status"] = out.get("status") or "active"
    return out


class JsonStore(BaseStore):
    kind = "json"

    def __init__(self, data_dir):
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)

    def _path(self, table):
        return os.path.join(self.data_dir, f"{table}.json")

    def _load(self, table, default=None):
        path = self._path(table)
        if not os.path.exists(path):
            return [] if default is None else default
        with open(path, "r", encoding="utf-8") as f:
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                log(f"Corrupt JSON in {path}: {e}", "ERROR")
                raise

    def _save(self, table, data):
        # Readers never see a half-written file
        path = self._path(table)
        temp = path + ".tmp"
        with lock:
            with open(temp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp, path)

    # ---- users ----

    def get_user(self, user_id):
        u = next((x for x in self._load("users") if x["id"] == user_id), None)
        return public_user(u) if u else None

    def get_user_by_email(self, email):
        u = next((x for x in self._load("users") if x["email"] == email), None)
        if not u:
            return None
        return {**u, "status": u.get("status") or "active", "salt": u.get("salt") or ""}

    def list_users(self):
        return [public_user(u) for u in sorted(self._load("users"), key=lambda u: u["id"])]

    def user_map(self):
        return {
            u["id"]: {"id": u["id"], "username": u["username"], "email": u["email"], "role": u["role"]}
            for u in self._load("users")
        }

    @_locked
    def create_user(self, email, username, password_hash, salt, role):
        users = self._load("users")
        if any(u["email"] == email or u["username"] == username for u in users):
            raise DuplicateError("Email or username already exists")
        if role == "admin" and any(u["role"] == "admin" for u in users):
            raise AdminConstraintError("Only one admin account is allowed")
        user = {
            "id": next_id(users),
            "email": email,
            "username": username,
            "password_hash": password_hash,
            "salt": salt,
            "role": role,
            "status": "active",
            "created_at": now_iso(),
        }
        users.append(user)
        self._save("users", users)
        return public_user(user)

    def first_admin_id(self):
        admins = sorted(u["id"] for u in self._load("users") if u["role"] == "admin")
        return admins[0] if admins else None

    @_locked
    def update_user_role(self, user_id, role):
        users = self._load("users")
        u = next((x for x in users if x["id"] == user_id), None)
        if not u:
            return None
        admins = [x for x in users if x["role"] == "admin"]
        if role == "admin" and u["role"] != "admin" and admins:
            raise AdminConstraintError("Only one admin account is allowed")
        if u["role"] == "admin" and role != "admin" and len(admins) <= 1:
            raise AdminConstraintError("Cannot remove the only admin account")
        u["role"] = role
        self._save("users", users)
        return public_user(u)

    @_locked
    def update_user_status(self, user_id, status):
        users = self._load("users")
        u = next((x for x in users if x["id"] == user_id), None)
        if not u:
            return None
        u["status"] = status
        self._save("users", users)
        return public_user(u)

    # ---- products ----

    def list_products(self, limit=None):
        products = newest_first(self._load("products"))
        return products[:limit] if limit else products

    def count_products(self):
        return len(self._load("products"))

    def get_product(self, product_id):
        return next((p for p in self._load("products") if p["id"] == product_id), None)

    @_locked
    def create_product(self, fields):
        products = self._load("products")
        product = {
            "id": next_id(products),
            "name": fields["name"],
            "price": fields["price"],
            "size": fields.get("size") or "Free Size",
            "status": fields.get("status") or "Available",
            "category": fields.get("category"),
            "rating": fields.get("rating") or 0,
            "review_count": fields.get("review_count") or 0,
            "description": fields.get("description"),
            "image": fields.get("image"),
            "created_at": now_iso(),
        }
        products.append(product)
        self._save("products", products)
        return product

    @_locked
    def update_product(self, product_id, fields):
        products = self._load("products")
        p = next((x for x in products if x["id"] == product_id), None)
        if not p:
            return None
        for col in PRODUCT_FIELDS:
            if col in fields:
                p[col] = fields[col]
        self._save("products", products)
        return p

    @_locked
    def delete_product(self, product_id):
        products = self._load("products")
        kept = [p for p in products if p["id"] != product_id]
        if len(kept) == len(products):
            return False
        self._save("products", kept)
        for table in ("product_reviews", "order_items", "cart_items"):
            rows = self._load(table)
            self._save(table, [r for r in rows if r["product_id"] != product_id])
        return True

    # ---- reviews ----

    def list_reviews(self, product_id=None, ids=None):
        reviews = self._load("product_reviews")
        if product_id is not None:
            reviews = [r for r in reviews if r["product_id"] == product_id]
        elif ids is not None:
            reviews = [r for r in reviews if r["id"] in ids]
        return newest_first(reviews)

    @_locked
    def create_review(self, product_id, username, rating, comment):
        reviews = self._load("product_reviews")
        review = {
            "id": next_id(reviews),
            "product_id": product_id,
            "username": username,
            "rating": rating,
            "comment": comment,
            "created_at": now_iso(),
        }
        reviews.append(review)
        self._save("product_reviews", reviews)
        ratings = [r["rating"] for r in reviews if r["product_id"] == product_id]
        self.update_product(product_id, {
            "rating": round(sum(ratings) / len(ratings), 1),
            "review_count": len(ratings),
        })
        return review

    # ---- homepage ----

    def get_homepage(self):
        return self._load("homepage_content", default={})

    @_locked
    def upsert_homepage(self, section_key, content):
        data = self.get_homepage()
        data[section_key] = content
        self._save("homepage_content", data)
        return content

    # ---- support ----

    def list_threads(self, user_id=None):
        threads = self._load("support_threads")
        if user_id is not None:
            threads = [t for t in threads if t["user_id"] == user_id]
        return newest_first(threads)

    def get_thread(self, thread_id):
        return next((t for t in self._load("support_threads") if t["id"] == thread_id), None)

    @_locked
    def create_thread(self, user_id, subject):
        threads = self._load("support_threads")
        thread = {
            "id": next_id(threads),
            "user_id": user_id,
            "subject": subject,
            "created_at": now_iso(),
            "assigned_to": None,
        }
        threads.append(thread)
        self._save("support_threads", threads)
        return thread

    @_locked
    def set_thread_assignee(self, thread_id, assigned_to):
        threads = self._load("support_threads")
        t = next((x for x in threads if x["id"] == thread_id), None)
        if not t:
            return None
        t["assigned_to"] = assigned_to
        self._save("support_threads", threads)
        return t

    def list_messages(self, thread_id):
        return oldest_first([m for m in self._load("support_messages") if m["thread_id"] == thread_id])

    @_locked
    def add_message(self, thread_id, sender_role, sender_id, content):
        messages = self._load("support_messages")
        message_id = next_id(messages)
        messages.append({
            "id": message_id,
            "thread_id": thread_id,
            "sender_role": sender_role,
            "sender_id": sender_id,
            "content": content,
            "created_at": now_iso(),
        })
        self._save("support_messages", messages)
        return message_id

    # ---- orders ----

    @_locked
    def create_order(self, user_id, shipping_address, payment_method, total_amount, items):
        orders = self._load("orders")
        order = {
            "id": next_id(orders),
            "user_id": user_id,
            "shipping_address": shipping_address,
            "payment_method": payment_method,
            "status": "pending",
            "total_amount": total_amount,
            "created_at": now_iso(),
        }
        orders.append(order)
        self._save("orders", orders)
        order_items = self._load("order_items")
        for it in items:
            order_items.append({
                "id": next_id(order_items),
                "order_id": order["id"],
                "product_id": it["product_id"],
                "quantity": it["quantity"],
                "price_at_time": it["price_at_time"],
            })
        self._save("order_items", order_items)
        return order

    def get_order(self, order_id):
        return next((o for o in self._load("orders") if o["id"] == order_id), None)

    def list_orders(self, user_id=None):
        orders = self._load("orders")
        if user_id is not None:
            orders = [o for o in orders if o["user_id"] == user_id]
        return newest_first(orders)

    def list_order_items(self, order_id):
        return sorted((i for i in self._load("order_items") if i["order_id"] == order_id), key=lambda i: i["id"])

    @_locked
    def update_order_status(self, order_id, status):
        orders = self._load("orders")
        o = next((x for x in orders if x["id"] == order_id), None)
        if not o:
            return None
        o["status"] = status
        self._save("orders", orders)
        return o

    # ---- cart ----

    def get_cart(self, user_id):
        rows = sorted((c for c in self._load("cart_items") if c["user_id"] == user_id), key=lambda c: c["id"])
        return [{"product_id": c["product_id"], "quantity": c["quantity"]} for c in rows]

    @_locked
    def set_cart_item(self, user_id, product_id, quantity):
        rows = self._load("cart_items")
        row = next((c for c in rows if c["user_id"] == user_id and c["product_id"] == product_id), None)
        if row:
            row["quantity"] = quantity
        else:
            rows.append({
                "id": next_id(rows),
                "user_id": user_id,
                "product_id": product_id,
                "quantity": quantity,
                "added_at": now_iso(),
            })
        self._save("cart_items", rows)

    @_locked
    def remove_cart_items(self, user_id, product_ids):
        rows = self._load("cart_items")
        kept = [c for c in rows if not (c["user_id"] == user_id and c["product_id"] in product_ids)]
        self._save("cart_items", kept)
        return len(rows) - len(kept)

    @_locked
    def clear_cart(self, user_id):
        rows = self._load("cart_items")
        kept = [c for c in rows if c["user_id"] != user_id]
        self._save("cart_items", kept)
        return len(rows) - len(kept)
