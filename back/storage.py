"""
Storage backends for the storefront.

Two implementations share one method set: `SqliteStore` (the real database) and
`db_json.JsonStore` (one JSON file per table, for machines where SQLite can't
be used). Route handlers only ever talk to that method set, never to SQL.
"""
import json
import os
import sqlite3

import config
import init_db
from logger import log

ROLES = ("admin", "mod", "buyer")
USER_STATUSES = ("active", "suspended", "banned")
PRODUCT_STATUSES = ("Available", "Sold")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

USER_PUBLIC_COLUMNS = "id, email, username, role, status, created_at"

PRODUCT_FIELDS = ("name", "price", "size", "status", "category", "rating", "review_count", "description", "image")

HOMEPAGE_DEFAULTS = {
    "achievements_title": "Some of Our Achievements",
    "hero_banners": [
        {
            "id": "banner1",
            "title": "The concept",
            "subtitle": "Home - The concept",
            "description": "Dive into the Walang Basagan ng Thrift universe!",
            "image": "https://images.unsplash.com/photo-1483985988355-763728e1935b?w=1920&h=1080&fit=crop",
        },
        {
            "id": "banner2",
            "title": "Y2K Collection",
            "subtitle": "Home - Collection",
            "description": "Explore our curated selection of authentic Y2K thrifted pieces.",
            "image": "https://images.unsplash.com/photo-1441986300917-64674bd600d8?w=1920&h=1080&fit=crop",
        },
        {
            "id": "banner3",
            "title": "Vintage Finds",
            "subtitle": "Home - Vintage",
            "description": "Discover unique pre-loved clothing from the 90s and 2000s.",
            "image": "https://images.unsplash.com/photo-1490481651871-ab68de25d43d?w=1920&h=1080&fit=crop",
        },
    ],
    "brand_intro": {
        "title": "Walang Basagan ng Thrift is ...",
        "headline": "The brand that brightens up your wardrobe!",
        "paragraph1": "We curate colorful and unique ensembles...",
        "paragraph2": "What is more, we hunt quality, iconic vintage clothing...",
        "image": "",
    },
    "cta": {"title": "Shop Y2K Thrift", "buttonText": "Browse Collection"},
    "about_us": {
        "title": "About Us",
        "headline": "Walang Basagan ng Thrift",
        "sub_text": (
            "We curate colorful and unique ensembles from pre-loved pieces inspired by early-2000s "
            "Filipino fashion icons. Our mission is to bring Y2K vibes to your wardrobe while "
            "promoting sustainable fashion through thrifting."
        ),
        "image": "",
    },
    "trusted_section": {"title": "They Trusted Us", "review_ids": []},
}


class StoreError(Exception):
    pass


class DuplicateError(StoreError):
    """Email or username already taken."""


class AdminConstraintError(StoreError):
    """Violates the one-admin rule."""


class BaseStore:
    """Seeding shared by both backends; everything else is per backend."""

    kind = "base"

    def seed_homepage_defaults(self):
        if self.get_homepage():
            return 0
        for key, value in HOMEPAGE_DEFAULTS.items():
            self.upsert_homepage(key, json.dumps(value))
        log(f"Seeded {len(HOMEPAGE_DEFAULTS)} homepage sections", "SUCCESS")
        return len(HOMEPAGE_DEFAULTS)

    def seed_products_from_file(self, path):
        if not path or not os.path.exists(path):
            return 0
        if self.count_products() > 0:
            return 0
        with open(path, "r", encoding="utf-8") as f:
            seed = json.load(f)
        for p in seed:
            self.create_product({
                "name": p["name"],
                "price": int(p["price"]),
                "size": p.get("size") or "Free Size",
                "status": p.get("status") or "Available",
                "category": p.get("category"),
                "rating": p.get("rating") or 0,
                "review_count": p.get("reviewCount", p.get("review_count")) or 0,
                "description": p.get("description"),
                "image": p.get("image"),
            })
        log(f"Seeded {len(seed)} products from {path}", "SUCCESS")
        return len(seed)


def _rows(cur):
    return [dict(r) for r in cur.fetchall()]


def _row(cur):
    r = cur.fetchone()
    return dict(r) if r else None


class SqliteStore(BaseStore):
    kind = "sqlite"

    def __init__(self, database=None):
        self.database = database or config.DATABASE

    def init(self):
        init_db.create_or_update_db_table(self.database)
        return self

    def db(self):
        conn = sqlite3.connect(self.database)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _query_one(self, sql, params=()):
        conn = self.db()
        try:
            return _row(conn.execute(sql, params))
        finally:
            conn.close()

    def _query_all(self, sql, params=()):
        conn = self.db()
        try:
            return _rows(conn.execute(sql, params))
        finally:
            conn.close()

    def _execute(self, sql, params=()):
        conn = self.db()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur
        except sqlite3.IntegrityError as e:
            msg = str(e)
            if "admin" in msg:
                raise AdminConstraintError(msg) from e
            if "UNIQUE constraint failed" in msg:
                raise DuplicateError("Email or username already exists") from e
            raise
        finally:
            conn.close()

    # ---- users ----

    def get_user(self, user_id):
        return self._query_one(f"SELECT {USER_PUBLIC_COLUMNS} FROM users WHERE id = ?", (user_id,))

    def get_user_by_email(self, email):
        return self._query_one(
            f"SELECT {USER_PUBLIC_COLUMNS}, password_hash, salt FROM users WHERE email = ?", (email,)
        )

    def list_users(self):
        return self._query_all(f"SELECT {USER_PUBLIC_COLUMNS} FROM users ORDER BY id ASC")

    def user_map(self):
        return {u["id"]: u for u in self._query_all("SELECT id, username, email, role FROM users")}

    def create_user(self, email, username, password_hash, salt, role):
        cur = self._execute(
            "INSERT INTO users (email, username, password_hash, salt, role) VALUES (?, ?, ?, ?, ?)",
            (email, username, password_hash, salt, role),
        )
        return self.get_user(cur.lastrowid)

    def first_admin_id(self):
        row = self._query_one("SELECT id FROM users WHERE role = 'admin' ORDER BY id ASC LIMIT 1")
        return row["id"] if row else None

    def update_user_role(self, user_id, role):
        self._execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
        return self.get_user(user_id)

    def update_user_status(self, user_id, status):
        self._execute("UPDATE users SET status = ? WHERE id = ?", (status, user_id))
        return self.get_user(user_id)

    # ---- products ----

    def list_products(self, limit=None):
        sql = "SELECT * FROM products ORDER BY created_at DESC, id DESC"
        if limit:
            return self._query_all(sql + " LIMIT ?", (limit,))
        return self._query_all(sql)

    def count_products(self):
        return self._query_one("SELECT COUNT(*) AS c FROM products")["c"]

    def get_product(self, product_id):
        return self._query_one("SELECT * FROM products WHERE id = ?", (product_id,))

    def create_product(self, fields):
        cols = [c for c in PRODUCT_FIELDS if c in fields]
        cur = self._execute(
            f"INSERT INTO products ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            tuple(fields[c] for c in cols),
        )
        return self.get_product(cur.lastrowid)

    def update_product(self, product_id, fields):
        cols = [c for c in PRODUCT_FIELDS if c in fields]
        if cols:
            self._execute(
                f"UPDATE products SET {', '.join(f'{c} = ?' for c in cols)} WHERE id = ?",
                tuple(fields[c] for c in cols) + (product_id,),
            )
        return self.get_product(product_id)

    def delete_product(self, product_id):
        conn = self.db()
        try:
            conn.execute("DELETE FROM product_reviews WHERE product_id = ?", (product_id,))
            conn.execute("DELETE FROM order_items WHERE product_id = ?", (product_id,))
            conn.execute("DELETE FROM cart_items WHERE product_id = ?", (product_id,))
            cur = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    # ---- reviews ----

    def list_reviews(self, product_id=None, ids=None):
        if product_id is not None:
            return self._query_all(
                "SELECT * FROM product_reviews WHERE product_id = ? ORDER BY created_at DESC, id DESC",
                (product_id,),
            )
        if ids is not None:
            if not ids:
                return []
            placeholders = ",".join("?" for _ in ids)
            return self._query_all(
                f"SELECT * FROM product_reviews WHERE id IN ({placeholders}) ORDER BY created_at DESC, id DESC",
                tuple(ids),
            )
        return self._query_all("SELECT * FROM product_reviews ORDER BY created_at DESC, id DESC")

    def create_review(self, product_id, username, rating, comment):
        conn = self.db()
        try:
            cur = conn.execute(
                "INSERT INTO product_reviews (product_id, username, rating, comment) VALUES (?, ?, ?, ?)",
                (product_id, username, rating, comment),
            )
            review_id = cur.lastrowid
            conn.execute('''
                UPDATE products
                   SET rating = (SELECT ROUND(AVG(rating), 1) FROM product_reviews WHERE product_id = ?),
                       review_count = (SELECT COUNT(*) FROM product_reviews WHERE product_id = ?)
                 WHERE id = ?
            ''', (product_id, product_id, product_id))
            conn.commit()
            return _row(conn.execute("SELECT * FROM product_reviews WHERE id = ?", (review_id,)))
        finally:
            conn.close()

    # ---- homepage ----

    def get_homepage(self):
        rows = self._query_all("SELECT section_key, content FROM homepage_content")
        return {r["section_key"]: r["content"] for r in rows}

    def upsert_homepage(self, section_key, content):
        self._execute('''
            INSERT INTO homepage_content (section_key, content) VALUES (?, ?)
            ON CONFLICT(section_key) DO UPDATE SET content = excluded.content, updated_at = datetime('now')
        ''', (section_key, content))
        row = self._query_one("SELECT content FROM homepage_content WHERE section_key = ?", (section_key,))
        return row["content"]

    # ---- support ----

    def list_threads(self, user_id=None):
        if user_id is not None:
            return self._query_all(
                "SELECT * FROM support_threads WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
            )
        return self._query_all("SELECT * FROM support_threads ORDER BY created_at DESC, id DESC")

    def get_thread(self, thread_id):
        return self._query_one("SELECT * FROM support_threads WHERE id = ?", (thread_id,))

    def create_thread(self, user_id, subject):
        cur = self._execute("INSERT INTO support_threads (user_id, subject) VALUES (?, ?)", (user_id, subject))
        return self.get_thread(cur.lastrowid)

    def set_thread_assignee(self, thread_id, assigned_to):
        self._execute("UPDATE support_threads SET assigned_to = ? WHERE id = ?", (assigned_to, thread_id))
        return self.get_thread(thread_id)

    def list_messages(self, thread_id):
        return self._query_all(
            "SELECT * FROM support_messages WHERE thread_id = ? ORDER BY created_at ASC, id ASC", (thread_id,)
        )

    def add_message(self, thread_id, sender_role, sender_id, content):
        cur = self._execute(
            "INSERT INTO support_messages (thread_id, sender_role, sender_id, content) VALUES (?, ?, ?, ?)",
            (thread_id, sender_role, sender_id, content),
        )
        return cur.lastrowid

    # ---- orders ----

    def create_order(self, user_id, shipping_address, payment_method, total_amount, items):
        conn = self.db()
        try:
            cur = conn.execute('''
                INSERT INTO orders (user_id, shipping_address, payment_method, status, total_amount)
                VALUES (?, ?, ?, 'pending', ?)
            ''', (user_id, shipping_address, payment_method, total_amount))
            order_id = cur.lastrowid
            conn.executemany(
                "INSERT INTO order_items (order_id, product_id, quantity, price_at_time) VALUES (?, ?, ?, ?)",
                [(order_id, it["product_id"], it["quantity"], it["price_at_time"]) for it in items],
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_order(order_id)

    def get_order(self, order_id):
        return self._query_one("SELECT * FROM orders WHERE id = ?", (order_id,))

    def list_orders(self, user_id=None):
        if user_id is not None:
            return self._query_all(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
            )
        return self._query_all("SELECT * FROM orders ORDER BY created_at DESC, id DESC")

    def list_order_items(self, order_id):
        return self._query_all("SELECT * FROM order_items WHERE order_id = ? ORDER BY id ASC", (order_id,))

    def update_order_status(self, order_id, status):
        self._execute("UPDATE orders SET status = ? WHERE id = ?", (status, order_id))
        return self.get_order(order_id)

    # ---- cart ----

    def get_cart(self, user_id):
        return self._query_all(
            "SELECT product_id, quantity FROM cart_items WHERE user_id = ? ORDER BY id ASC", (user_id,)
        )

    def set_cart_item(self, user_id, product_id, quantity):
        self._execute('''
            INSERT INTO cart_items (user_id, product_id, quantity) VALUES (?, ?, ?)
            ON CONFLICT(user_id, product_id) DO UPDATE SET quantity = excluded.quantity
        ''', (user_id, product_id, quantity))

    def remove_cart_items(self, user_id, product_ids):
        if not product_ids:
            return 0
        placeholders = ",".join("?" for _ in product_ids)
        cur = self._execute(
            f"DELETE FROM cart_items WHERE user_id = ? AND product_id IN ({placeholders})",
            (user_id, *product_ids),
        )
        return cur.rowcount

    def clear_cart(self, user_id):
        return self._execute("DELETE FROM cart_items WHERE user_id = ?", (user_id,)).rowcount


def open_store(use_json=None, database=None, data_dir=None):
    """SQLite unless USE_JSON_DB is set; falls back to the JSON files if SQLite can't be opened."""
    from db_json import JsonStore

    use_json = config.USE_JSON_DB if use_json is None else use_json
    data_dir = data_dir or config.DATA_DIR
    if use_json:
        log("Using JSON file store (USE_JSON_DB=1)", "INFO")
        store = JsonStore(data_dir)
    else:
        try:
            store = SqliteStore(database).init()
            log(f"Using SQLite database at {store.database}", "SUCCESS")
        except (sqlite3.Error, OSError) as e:
            log(f"SQLite unavailable: {e}", "WARNING")
            log("Using JSON file store instead. Run seed_admin.py --json to create the admin.", "WARNING")
            store = JsonStore(data_dir)
    store.seed_homepage_defaults()
    store.seed_products_from_file(config.PRODUCTS_SEED_FILE)
    return store
