import os
import sqlite3
import sys

import config


def table_exists(cursor, table_name: str) -> bool:
    """Check if a table exists in the database."""
    cursor.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def column_exists(cursor, table_name: str, column_name: str) -> bool:
    """Check if a given column exists in a table."""
    cursor.execute(f"PRAGMA table_info({table_name})")
    return any(row[1] == column_name for row in cursor.fetchall())


def create_or_update_db_table(database=None):
    database = database or config.DATABASE
    folder = os.path.dirname(os.path.abspath(database))
    os.makedirs(folder, exist_ok=True)
    conn = sqlite3.connect(database)
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        cursor = conn.cursor()

        # Users: roles are admin (only one), mod, buyer
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                username TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                salt TEXT NOT NULL DEFAULT '',
                role TEXT NOT NULL CHECK(role IN ('admin', 'mod', 'buyer')),
                status TEXT DEFAULT 'active' CHECK(status IN ('active', 'suspended', 'banned')),
                created_at TEXT DEFAULT (datetime('now'))
            )
        ''')

        # Single admin, enforced at the schema level
        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS enforce_single_admin_insert
            BEFORE INSERT ON users
            WHEN NEW.role = 'admin'
            BEGIN
                SELECT RAISE(ABORT, 'Only one admin account is allowed')
                WHERE (SELECT COUNT(*) FROM users WHERE role = 'admin') >= 1;
            END
        ''')
        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS enforce_single_admin_update
            BEFORE UPDATE OF role ON users
            WHEN NEW.role = 'admin' AND OLD.role != 'admin'
            BEGIN
                SELECT RAISE(ABORT, 'Only one admin account is allowed')
                WHERE (SELECT COUNT(*) FROM users WHERE role = 'admin' AND id != NEW.id) >= 1;
            END
        ''')
        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS enforce_single_admin_update_from_admin
            BEFORE UPDATE OF role ON users
            WHEN OLD.role = 'admin' AND NEW.role != 'admin'
            BEGIN
                SELECT RAISE(ABORT, 'Cannot remove the only admin account')
                WHERE (SELECT COUNT(*) FROM users WHERE role = 'admin') <= 1;
            END
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_username ON users(username)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price INTEGER NOT NULL,
                size TEXT DEFAULT 'Free Size',
                status TEXT NOT NULL DEFAULT 'Available' CHECK(status IN ('Available', 'Sold')),
                category TEXT,
                rating REAL DEFAULT 0,
                review_count INTEGER DEFAULT 0,
                description TEXT,
                image TEXT,
                created_at TEXT DEFAULT (datetime('now'))
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_products_status ON products(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_products_category ON products(category)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS product_reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id INTEGER NOT NULL,
                username TEXT,
                rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
                comment TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (product_id) REFERENCES products(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_product_reviews_product ON product_reviews(product_id)')

        # Homepage sections, content is a JSON document per key
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS homepage_content (
                section_key TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                updated_at TEXT DEFAULT (datetime('now'))
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS support_threads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                subject TEXT NOT NULL,
                created_at TEXT DEFAULT (datetime('now')),
                assigned_to INTEGER,
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS support_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_id INTEGER NOT NULL,
                sender_role TEXT NOT NULL CHECK(sender_role IN ('user', 'admin')),
                sender_id INTEGER,
                content TEXT NOT NULL,
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (thread_id) REFERENCES support_threads(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_support_threads_user ON support_threads(user_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_support_messages_thread ON support_messages(thread_id)')

        # Orders + order_items: classic one-to-many, price snapshot per item
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                shipping_address TEXT NOT NULL,
                payment_method TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')),
                total_amount INTEGER NOT NULL,
                created_at TEXT DEFAULT (datetime('now')),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS order_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL DEFAULT 1,
                price_at_time INTEGER NOT NULL,
                FOREIGN KEY (order_id) REFERENCES orders(id),
                FOREIGN KEY (product_id) REFERENCES products(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS cart_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL DEFAULT 1,
                added_at TEXT DEFAULT (datetime('now')),
                UNIQUE (user_id, product_id),
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (product_id) REFERENCES products(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_cart_items_user ON cart_items(user_id)')

        # Add missing columns if the DB was created by an older build
        backfill = [
            ('users', 'salt', "TEXT NOT NULL DEFAULT ''"),
            ('users', 'status', "TEXT DEFAULT 'active' CHECK(status IN ('active', 'suspended', 'banned'))"),
            ('products', 'image', 'TEXT'),
            ('support_threads', 'assigned_to', 'INTEGER'),
        ]
        for table, col, definition in backfill:
            if table_exists(cursor, table) and not column_exists(cursor, table, col):
                print(f"Adding column {col} to {table}")
                cursor.execute(f'ALTER TABLE {table} ADD COLUMN {col} {definition}')

        conn.commit()

    finally:
        conn.close()


if __name__ == '__main__':
    try:
        if not os.path.exists(config.DATABASE):
            print("No database found → creating a new one...")
        else:
            print("Database found → checking schema and upgrading if needed...")
        create_or_update_db_table()
        print("✔ Done.")
    except sqlite3.Error as e:
        print(f"SQL error: {e}")
        sys.exit(1)
