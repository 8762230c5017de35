try:
    import json
    import os
    import time
    import uuid
    from functools import wraps

    from flask import Flask, request, jsonify, send_from_directory
    from flask_cors import CORS
    from PIL import Image, UnidentifiedImageError
    from werkzeug.exceptions import HTTPException
    from werkzeug.utils import secure_filename

    import config
    import storage
    from logger import log
    from security import sign_token, verify_token, hash_password, verify_password
    from storage import (
        ROLES,
        USER_STATUSES,
        PRODUCT_STATUSES,
        ORDER_STATUSES,
        AdminConstraintError,
        DuplicateError,
    )
except ImportError as e:
    print(f"Failed to import required module: {e}. Make sure all dependencies are installed.")
    raise SystemExit(1)

app = Flask(__name__)
app.json.sort_keys = False
CORS(app, resources={r"/api/*": {"origins": config.CORS_ORIGIN}})

app.config.update(
    STORE=None,
    UPLOAD_DIR=config.UPLOAD_DIR,
    MAX_UPLOAD_MB=config.MAX_UPLOAD_MB,
    TRUST_USER_ID_HEADER=config.TRUST_USER_ID_HEADER,
    ALLOW_STAFF_SIGNUP=config.ALLOW_STAFF_SIGNUP,
    # One extra MB for the other form fields of a product upload
    MAX_CONTENT_LENGTH=(config.MAX_UPLOAD_MB + 1) * 1024 * 1024,
)

if config.SECRET_KEY_GENERATED:
    log("SECRET_KEY not set, using a random per-process key (tokens won't survive a restart)", "WARNING")

IMAGE_FORMATS = {".jpg": "JPEG", ".jpeg": "JPEG", ".png": "PNG", ".gif": "GIF", ".webp": "WEBP"}
MAX_IMAGE_WIDTH = 1600
UNKNOWN_USER = {"username": "Unknown", "email": ""}


class UploadError(Exception):
    def __init__(self, message, code=400):
        super().__init__(message)
        self.message = message
        self.code = code


def get_store():
    store = app.config.get("STORE")
    if store is None:
        store = storage.open_store()
        app.config["STORE"] = store
    return store


def _payload() -> dict:
    if request.form or request.files:
        return request.form.to_dict()
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ----------------------------
# Auth guards
# ----------------------------

def _authenticate():
    """Resolve the caller from a bearer token or, if trusted, the X-User-Id header."""
    auth = request.headers.get("Authorization", "")
    raw_id = None
    if auth.startswith("Bearer "):
        body = verify_token(auth.split(" ", 1)[1].strip())
        if not body or body.get("role") != "user" or not body.get("user_id"):
            return None, (jsonify({"error": "Invalid token"}), 401)
        raw_id = body["user_id"]
    elif app.config["TRUST_USER_ID_HEADER"]:
        raw_id = request.headers.get("X-User-Id")
    user_id = _int(raw_id)
    if not user_id:
        return None, (jsonify({"error": "Unauthorized"}), 401)
    user = get_store().get_user(user_id)
    if not user:
        log(f"Auth: user_id={user_id} not found", "WARNING")
        return None, (jsonify({"error": "User not found"}), 401)
    status = user.get("status") or "active"
    if status in ("banned", "suspended"):
        log(f"Auth: user_id={user_id} is {status}", "WARNING")
        return None, (jsonify({"error": "Account is " + status}), 403)
    return user, None


def _auth_required(roles=None, denied=None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user, error = _authenticate()
            if error:
                return error
            if roles and user["role"] not in roles:
                log(f"Auth: user_id={user['id']} ({user['role']}) denied on {request.path}", "WARNING")
                return jsonify({"error": denied}), 403
            request.auth_user = user
            return fn(*args, **kwargs)
        return wrapper
    return decorator


require_auth = _auth_required()
require_staff = _auth_required(("admin", "mod"), "Admin or moderator access required")
require_admin = _auth_required(("admin",), "Admin access required")
require_buyer = _auth_required(("buyer",), "Only buyer accounts can review products")


def fails_with(message):
    """Log unexpected errors and answer 500 with a route-specific message."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except HTTPException:
                raise
            except Exception as e:
                log(f"{request.method} {request.path} failed: {e!r}", "ERROR")
                return jsonify({"error": message}), 500
        return wrapper
    return decorator


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"error": "Method not allowed"}), 405


@app.errorhandler(413)
def too_large(e):
    return jsonify({"error": "Request too large"}), 413


@app.errorhandler(500)
def internal_error(e):
    log(f"Unhandled error on {request.method} {request.path}: {e}", "ERROR")
    return jsonify({"error": "Internal server error"}), 500


# ----------------------------
# Uploads
# ----------------------------

def save_upload(file_storage) -> str:
    """Re-encode an uploaded image into UPLOAD_DIR and return its filename."""
    name = secure_filename(file_storage.filename or "")
    ext = os.path.splitext(name)[1].lower() or ".jpg"
    if ext not in config.ALLOWED_EXT:
        log(f"save_upload: unsupported file type: {ext}", "WARNING")
        raise UploadError("unsupported file type", 415)

    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    max_mb = app.config["MAX_UPLOAD_MB"]
    if size > max_mb * 1024 * 1024:
        log(f"save_upload: file too large: {size} bytes (limit: {max_mb}MB)", "WARNING")
        raise UploadError(f"file too large (>{max_mb}MB)", 413)

    try:
        img = Image.open(stream)
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        log(f"save_upload: not an image: {e}", "WARNING")
        raise UploadError("invalid image file", 400)

    # Re-saving without the original info dict drops EXIF
    if IMAGE_FORMATS[ext] == "JPEG":
        if img.mode != "RGB":
            img = img.convert("RGB")
    elif img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    if img.width > MAX_IMAGE_WIDTH:
        ratio = MAX_IMAGE_WIDTH / float(img.width)
        img = img.resize((MAX_IMAGE_WIDTH, max(1, int(img.height * ratio))))
        log(f"save_upload: resized to {img.size}", "INFO")

    upload_dir = app.config["UPLOAD_DIR"]
    os.makedirs(upload_dir, exist_ok=True)
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}{ext}"
    img.save(os.path.join(upload_dir, filename), format=IMAGE_FORMATS[ext], optimize=True, quality=85)
    log(f"save_upload: stored {filename}", "SUCCESS")
    return filename


def remove_upload(filename):
    if not filename or filename.startswith("http"):
        return
    path = os.path.join(app.config["UPLOAD_DIR"], os.path.basename(filename))
    if os.path.exists(path):
        os.remove(path)
        log(f"Removed upload {filename}", "INFO")


@app.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(app.config["UPLOAD_DIR"], filename)


# ----------------------------
# Response shaping
# ----------------------------

def enrich_thread(thread, users):
    assigned = thread.get("assigned_to")
    return {
        **thread,
        "user": users.get(thread["user_id"]) or dict(UNKNOWN_USER),
        "assigned_to_user": users.get(assigned) if assigned else None,
    }


def product_map(store):
    return {p["id"]: p for p in store.list_products()}


def order_items(store, order_id, products, with_image=False):
    items = []
    for i in store.list_order_items(order_id):
        p = products.get(i["product_id"])
        item = {**i, "product_name": p["name"] if p else "Unknown"}
        if with_image:
            item["product_image"] = p.get("image") if p else None
        items.append(item)
    return items


def parse_section(raw):
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def homepage_content(store):
    return {key: parse_section(raw) for key, raw in store.get_homepage().items()}


def product_fields(data) -> dict:
    """Pick product columns out of a form/JSON payload. Raises ValueError on bad values."""
    fields = {}
    for key in ("name", "size"):
        if key in data:
            fields[key] = data[key]
    for key in ("category", "description"):
        if key in data:
            fields[key] = data[key] or None
    try:
        if "price" in data:
            fields["price"] = int(float(data["price"]))
        if "rating" in data:
            fields["rating"] = float(data["rating"] or 0)
        if "review_count" in data:
            fields["review_count"] = int(data["review_count"] or 0)
    except (TypeError, ValueError):
        raise ValueError("price, rating and review_count must be numbers")
    if "status" in data:
        if data["status"] not in PRODUCT_STATUSES:
            raise ValueError("status must be Available or Sold")
        fields["status"] = data["status"]
    return fields


# ----------------------------
# Auth routes
# ----------------------------

@app.route('/api/auth/register', methods=['POST'])
@fails_with("Registration failed")
def auth_register():
    log("Received register request", "INFO")
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    role = data.get("role") or "buyer"
    if not email or not username or not password:
        log("Register missing required fields", "WARNING")
        return jsonify({"error": "Email, username, and password are required"}), 400
    if role not in ROLES:
        return jsonify({"error": "Invalid role. Must be: admin, mod, or buyer"}), 400
    if role != "buyer" and not app.config["ALLOW_STAFF_SIGNUP"]:
        log(f"Register refused self-signup as {role} for {email}", "WARNING")
        return jsonify({"error": "Only buyer accounts can self-register"}), 403

    pwd_hash, salt = hash_password(password)
    try:
        user = get_store().create_user(email, username, pwd_hash, salt, role)
    except DuplicateError:
        log(f"Register failed: {email} / {username} already taken", "WARNING")
        return jsonify({"error": "Email or username already exists"}), 409
    except AdminConstraintError:
        log("Register failed: an admin already exists", "WARNING")
        return jsonify({"error": "Only one admin account is allowed"}), 409
    token = sign_token({"role": "user", "user_id": user["id"]})
    log(f"Registered user_id={user['id']} as {role}", "SUCCESS")
    return jsonify({"user": user, "token": token}), 201


@app.route('/api/auth/login', methods=['POST'])
@fails_with("Login failed")
def auth_login():
    log("Received login request", "INFO")
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        log("Login missing email or password", "WARNING")
        return jsonify({"error": "Email and password are required"}), 400
    row = get_store().get_user_by_email(email)
    if not row or not verify_password(password, row.get("password_hash"), row.get("salt")):
        log("Login failed: invalid credentials", "WARNING")
        return jsonify({"error": "Invalid email or password"}), 401
    status = row.get("status") or "active"
    if status == "banned":
        return jsonify({"error": "Your account has been banned"}), 403
    if status == "suspended":
        return jsonify({"error": "Your account has been suspended"}), 403
    user = {k: v for k, v in row.items() if k not in ("password_hash", "salt")}
    user["status"] = status
    token = sign_token({"role": "user", "user_id": user["id"]})
    log(f"Login successful for user_id={user['id']}", "SUCCESS")
    return jsonify({"user": user, "token": token})


@app.route('/api/auth/me/<int:user_id>', methods=['GET'])
@fails_with("Failed to get user")
def auth_me_by_id(user_id):
    user = get_store().get_user(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user})


@app.route('/api/auth/me', methods=['GET'])
@require_auth
@fails_with("Failed to get user")
def auth_me():
    return jsonify({"user": request.auth_user})


# ----------------------------
# Admin: users
# ----------------------------

@app.route('/api/admin/users', methods=['GET'])
@require_admin
@fails_with("Failed to fetch users")
def admin_users_list():
    users = get_store().list_users()
    log(f"Returning {len(users)} users", "SUCCESS")
    return jsonify({"users": users})


@app.route('/api/admin/users', methods=['POST'])
@require_admin
@fails_with("Failed to create user")
def admin_users_create():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    role = data.get("role") or "buyer"
    if not email or not username or not password:
        return jsonify({"error": "Email, username, and password are required"}), 400
    if role not in ("mod", "buyer"):
        return jsonify({"error": "Role must be Moderator or User"}), 400
    pwd_hash, salt = hash_password(password)
    try:
        user = get_store().create_user(email, username, pwd_hash, salt, role)
    except DuplicateError:
        return jsonify({"error": "Email or username already exists"}), 409
    log(f"Admin created user_id={user['id']} ({role})", "SUCCESS")
    return jsonify({"user": user}), 201


def _guard_first_admin(store, user_id):
    if store.first_admin_id() == user_id:
        log(f"Refused change to first admin user_id={user_id}", "WARNING")
        return jsonify({"error": "Cannot change the first admin account"}), 403
    if not store.get_user(user_id):
        return jsonify({"error": "User not found"}), 404
    return None


@app.route('/api/admin/users/<int:user_id>/role', methods=['PATCH'])
@require_admin
@fails_with("Failed to update role")
def admin_users_role(user_id):
    role = _payload().get("role")
    if role not in ("mod", "buyer"):
        return jsonify({"error": "Can only set Moderator or User"}), 400
    store = get_store()
    denied = _guard_first_admin(store, user_id)
    if denied:
        return denied
    try:
        user = store.update_user_role(user_id, role)
    except AdminConstraintError as e:
        return jsonify({"error": str(e)}), 409
    log(f"user_id={user_id} role set to {role}", "SUCCESS")
    return jsonify({"user": user})


@app.route('/api/admin/users/<int:user_id>/status', methods=['PATCH'])
@require_admin
@fails_with("Failed to update status")
def admin_users_status(user_id):
    status = _payload().get("status")
    if status not in USER_STATUSES:
        return jsonify({"error": "Invalid status"}), 400
    store = get_store()
    denied = _guard_first_admin(store, user_id)
    if denied:
        return denied
    user = store.update_user_status(user_id, status)
    log(f"user_id={user_id} status set to {status}", "SUCCESS")
    return jsonify({"user": user})


# ----------------------------
# Admin: products and reviews
# ----------------------------

@app.route('/api/admin/products', methods=['GET'])
@require_staff
@fails_with("Failed to fetch products")
def admin_products_list():
    return jsonify({"products": get_store().list_products()})


@app.route('/api/admin/products', methods=['POST'])
@require_staff
@fails_with("Failed to create product")
def admin_products_create():
    log("Received request to create new product", "INFO")
    data = _payload()
    if not data.get("name") or data.get("price") in (None, ""):
        log("Missing required fields for product creation", "WARNING")
        return jsonify({"error": "Name and price are required"}), 400
    try:
        fields = product_fields(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    fields.setdefault("size", "Free Size")
    fields.setdefault("status", "Available")

    upload = request.files.get("image")
    if upload and upload.filename:
        try:
            fields["image"] = save_upload(upload)
        except UploadError as e:
            return jsonify({"error": e.message}), e.code

    product = get_store().create_product(fields)
    log(f"Product {product['id']} created successfully", "SUCCESS")
    return jsonify({"product": product}), 201


@app.route('/api/admin/products/<int:pid>', methods=['PATCH'])
@require_staff
@fails_with("Failed to update product")
def admin_products_update(pid):
    log(f"Received request to update product {pid}", "INFO")
    store = get_store()
    existing = store.get_product(pid)
    if not existing:
        return jsonify({"error": "Product not found"}), 404
    try:
        fields = product_fields(_payload())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    upload = request.files.get("image")
    if upload and upload.filename:
        try:
            fields["image"] = save_upload(upload)
        except UploadError as e:
            return jsonify({"error": e.message}), e.code
        remove_upload(existing.get("image"))

    if not fields:
        log(f"No fields to update for product {pid}", "WARNING")
        return jsonify({"error": "No fields to update"}), 400
    product = store.update_product(pid, fields)
    log(f"Product {pid} updated: {sorted(fields)}", "SUCCESS")
    return jsonify({"product": product})


@app.route('/api/admin/products/<int:pid>', methods=['DELETE'])
@require_staff
@fails_with("Failed to delete product")
def admin_products_delete(pid):
    log(f"Received request to delete product {pid}", "INFO")
    store = get_store()
    existing = store.get_product(pid)
    if not existing or not store.delete_product(pid):
        return jsonify({"error": "Product not found"}), 404
    remove_upload(existing.get("image"))
    log(f"Product {pid} deleted successfully", "SUCCESS")
    return jsonify({"success": True})


@app.route('/api/admin/products/<int:pid>/reviews', methods=['GET'])
@require_staff
@fails_with("Failed to fetch reviews")
def admin_product_reviews(pid):
    store = get_store()
    product = store.get_product(pid)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product, "reviews": store.list_reviews(product_id=pid)})


@app.route('/api/admin/reviews', methods=['GET'])
@require_staff
@fails_with("Failed to fetch reviews")
def admin_reviews_list():
    store = get_store()
    products = product_map(store)
    reviews = [
        {**r, "product_name": products[r["product_id"]]["name"] if r["product_id"] in products else "Unknown"}
        for r in store.list_reviews()
    ]
    return jsonify({"reviews": reviews})


# ----------------------------
# Admin: support threads
# ----------------------------

def _buyer_thread(store, thread_id, denied):
    """Load a thread whose customer is a buyer. Returns (thread, error_response)."""
    thread = store.get_thread(thread_id)
    if not thread:
        return None, (jsonify({"error": "Thread not found"}), 404)
    customer = store.get_user(thread["user_id"])
    if not customer or customer["role"] != "buyer":
        return None, (jsonify({"error": denied}), 403)
    return thread, None


def _assigned_elsewhere(thread, staff):
    return staff["role"] == "mod" and thread["assigned_to"] is not None and thread["assigned_to"] != staff["id"]


@app.route('/api/admin/support/threads', methods=['GET'])
@require_staff
@fails_with("Failed to fetch threads")
def admin_support_threads():
    staff = request.auth_user
    store = get_store()
    users = store.user_map()
    threads = [t for t in store.list_threads() if users.get(t["user_id"], {}).get("role") == "buyer"]
    if staff["role"] == "mod":
        threads = [t for t in threads if t["assigned_to"] is None or t["assigned_to"] == staff["id"]]
    log(f"Returning {len(threads)} support threads to user_id={staff['id']}", "SUCCESS")
    return jsonify({"threads": [enrich_thread(t, users) for t in threads]})


@app.route('/api/admin/support/threads/<int:tid>/messages', methods=['GET'])
@require_staff
@fails_with("Failed to fetch messages")
def admin_support_messages(tid):
    staff = request.auth_user
    store = get_store()
    thread, error = _buyer_thread(store, tid, "Can only message customer accounts")
    if error:
        return error
    if staff["role"] == "mod":
        if _assigned_elsewhere(thread, staff):
            return jsonify({"error": "This thread is assigned to another moderator"}), 403
        if thread["assigned_to"] is None:
            thread = store.set_thread_assignee(tid, staff["id"])
            log(f"Thread {tid} claimed by mod user_id={staff['id']}", "INFO")
    return jsonify({"thread": enrich_thread(thread, store.user_map()), "messages": store.list_messages(tid)})


@app.route('/api/admin/support/threads/<int:tid>/assign', methods=['PATCH'])
@require_staff
@fails_with("Failed to assign thread")
def admin_support_assign(tid):
    staff = request.auth_user
    store = get_store()
    data = _payload()
    assigned_to = data.get("assigned_to")
    if assigned_to is not None:
        assigned_to = _int(assigned_to)
        if assigned_to is None:
            return jsonify({"error": "assigned_to must be a user id or null"}), 400
    thread, error = _buyer_thread(store, tid, "Can only assign buyer threads")
    if error:
        return error

    if staff["role"] == "admin":
        if assigned_to is not None:
            target = store.get_user(assigned_to)
            if not target or target["role"] != "mod":
                return jsonify({"error": "Can only assign to moderators"}), 400
    elif assigned_to is not None:
        if assigned_to != staff["id"]:
            return jsonify({"error": "Moderators can only assign threads to themselves"}), 403
        if thread["assigned_to"] is not None:
            return jsonify({"error": "Thread is already assigned"}), 400
    elif thread["assigned_to"] != staff["id"]:
        return jsonify({"error": "Can only unassign threads assigned to you"}), 403

    updated = store.set_thread_assignee(tid, assigned_to)
    log(f"Thread {tid} assigned_to={assigned_to} by user_id={staff['id']}", "SUCCESS")
    return jsonify({"thread": enrich_thread(updated, store.user_map())})


@app.route('/api/admin/support/threads/<int:tid>/messages', methods=['POST'])
@require_staff
@fails_with("Failed to send message")
def admin_support_reply(tid):
    staff = request.auth_user
    content = (_payload().get("content") or "").strip()
    if not content:
        return jsonify({"error": "Message content required"}), 400
    store = get_store()
    thread, error = _buyer_thread(store, tid, "Can only message customer accounts")
    if error:
        return error
    if _assigned_elsewhere(thread, staff):
        return jsonify({"error": "This thread is assigned to another moderator"}), 403
    store.add_message(tid, "admin", staff["id"], content)
    log(f"Staff user_id={staff['id']} replied on thread {tid}", "SUCCESS")
    return jsonify({"messages": store.list_messages(tid)}), 201


# ----------------------------
# Support threads (customer side)
# ----------------------------

@app.route('/api/support/threads', methods=['GET'])
@require_auth
@fails_with("Failed to fetch threads")
def support_threads():
    return jsonify({"threads": get_store().list_threads(user_id=request.auth_user["id"])})


@app.route('/api/support/threads', methods=['POST'])
@require_auth
@fails_with("Failed to create thread")
def support_threads_create():
    subject = (_payload().get("subject") or "").strip()
    if not subject:
        return jsonify({"error": "Subject required"}), 400
    thread = get_store().create_thread(request.auth_user["id"], subject)
    log(f"Support thread {thread['id']} opened by user_id={request.auth_user['id']}", "SUCCESS")
    return jsonify({"thread": thread}), 201


def _own_thread(store, thread_id):
    thread = store.get_thread(thread_id)
    if not thread:
        return None, (jsonify({"error": "Thread not found"}), 404)
    if thread["user_id"] != request.auth_user["id"]:
        return None, (jsonify({"error": "Access denied"}), 403)
    return thread, None


@app.route('/api/support/threads/<int:tid>/messages', methods=['GET'])
@require_auth
@fails_with("Failed to fetch messages")
def support_messages(tid):
    store = get_store()
    thread, error = _own_thread(store, tid)
    if error:
        return error
    return jsonify({"thread": thread, "messages": store.list_messages(tid)})


@app.route('/api/support/threads/<int:tid>/messages', methods=['POST'])
@require_auth
@fails_with("Failed to send message")
def support_messages_send(tid):
    content = (_payload().get("content") or "").strip()
    if not content:
        return jsonify({"error": "Message content required"}), 400
    store = get_store()
    thread, error = _own_thread(store, tid)
    if error:
        return error
    store.add_message(tid, "user", request.auth_user["id"], content)
    return jsonify({"messages": store.list_messages(tid)}), 201


# ----------------------------
# Homepage content
# ----------------------------

@app.route('/api/homepage', methods=['GET'])
@fails_with("Failed to fetch homepage content")
def homepage_get():
    return jsonify({"content": homepage_content(get_store())})


@app.route('/api/admin/homepage', methods=['GET'])
@require_staff
@fails_with("Failed to fetch homepage content")
def admin_homepage_get():
    return jsonify({"content": homepage_content(get_store())})


@app.route('/api/admin/homepage', methods=['PATCH'])
@require_staff
@fails_with("Failed to update homepage content")
def admin_homepage_update():
    data = _payload()
    section_key = data.get("section_key")
    if not section_key:
        return jsonify({"error": "section_key required"}), 400
    content = data.get("content")
    raw = content if isinstance(content, str) else json.dumps(content)
    stored = get_store().upsert_homepage(section_key, raw)
    log(f"Homepage section '{section_key}' updated by user_id={request.auth_user['id']}", "SUCCESS")
    return jsonify({"section_key": section_key, "content": parse_section(stored)})


@app.route('/api/admin/homepage/upload', methods=['POST'])
@require_staff
@fails_with("Failed to upload image")
def admin_homepage_upload():
    upload = request.files.get("image")
    if not upload or not upload.filename:
        return jsonify({"error": "No image file provided"}), 400
    try:
        filename = save_upload(upload)
    except UploadError as e:
        return jsonify({"error": e.message}), e.code
    return jsonify({"filename": filename})


# ----------------------------
# Catalog (public) and reviews
# ----------------------------

@app.route('/api/products', methods=['GET'])
@fails_with("Failed to fetch products")
def products_get():
    limit = _int(request.args.get("limit"))
    products = get_store().list_products(limit=limit if limit and limit > 0 else None)
    log(f"Returning {len(products)} products", "SUCCESS")
    return jsonify({"products": products})


@app.route('/api/products/<int:pid>', methods=['GET'])
@fails_with("Failed to fetch product")
def products_get_one(pid):
    product = get_store().get_product(pid)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product})


@app.route('/api/products/<int:pid>/reviews', methods=['POST'])
@require_buyer
@fails_with("Failed to add review")
def products_review(pid):
    data = _payload()
    rating = _int(data.get("rating"))
    if rating is None or not 1 <= rating <= 5:
        return jsonify({"error": "rating must be an integer from 1 to 5"}), 400
    store = get_store()
    if not store.get_product(pid):
        return jsonify({"error": "Product not found"}), 404
    comment = (data.get("comment") or "").strip() or None
    review = store.create_review(pid, request.auth_user["username"], rating, comment)
    log(f"Review {review['id']} added to product {pid}", "SUCCESS")
    return jsonify({"review": review, "product": store.get_product(pid)}), 201


@app.route('/api/reviews', methods=['GET'])
@fails_with("Failed to fetch reviews")
def reviews_by_ids():
    ids = [n for n in (_int(part) for part in request.args.get("ids", "").split(",")) if n and n > 0]
    if not ids:
        return jsonify({"reviews": []})
    return jsonify({"reviews": get_store().list_reviews(ids=ids)})


# ----------------------------
# Cart
# ----------------------------

def cart_view(store, user_id):
    items, total = [], 0
    for row in store.get_cart(user_id):
        product = store.get_product(row["product_id"])
        if not product:
            continue
        items.append({"product_id": row["product_id"], "quantity": row["quantity"], "product": product})
        total += product["price"] * row["quantity"]
    return {"items": items, "total": total}


@app.route('/api/cart', methods=['GET'])
@require_auth
@fails_with("Failed to fetch cart")
def cart_get():
    return jsonify(cart_view(get_store(), request.auth_user["id"]))


@app.route('/api/cart', methods=['PUT'])
@require_auth
@fails_with("Failed to update cart")
def cart_put():
    data = _payload()
    product_id = _int(data.get("product_id"))
    quantity = _int(data.get("quantity", 1))
    if product_id is None or quantity is None:
        return jsonify({"error": "product_id and quantity must be integers"}), 400
    store = get_store()
    user_id = request.auth_user["id"]
    if quantity <= 0:
        store.remove_cart_items(user_id, [product_id])
        return jsonify(cart_view(store, user_id))
    product = store.get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    if product["status"] != "Available":
        return jsonify({"error": "Product is sold out"}), 400
    store.set_cart_item(user_id, product_id, quantity)
    log(f"Cart of user_id={user_id}: product {product_id} x{quantity}", "INFO")
    return jsonify(cart_view(store, user_id))


@app.route('/api/cart/<int:pid>', methods=['DELETE'])
@require_auth
@fails_with("Failed to update cart")
def cart_remove(pid):
    store = get_store()
    store.remove_cart_items(request.auth_user["id"], [pid])
    return jsonify(cart_view(store, request.auth_user["id"]))


@app.route('/api/cart', methods=['DELETE'])
@require_auth
@fails_with("Failed to clear cart")
def cart_clear():
    store = get_store()
    store.clear_cart(request.auth_user["id"])
    return jsonify(cart_view(store, request.auth_user["id"]))


# ----------------------------
# Orders
# ----------------------------

@app.route('/api/orders', methods=['POST'])
@require_auth
@fails_with("Failed to create order")
def orders_create():
    user_id = request.auth_user["id"]
    store = get_store()
    data = _payload()
    shipping_address = data.get("shipping_address")
    payment_method = data.get("payment_method")
    items = store.get_cart(user_id) if data.get("from_cart") else data.get("items")
    if not shipping_address or not payment_method or not isinstance(items, list) or not items:
        return jsonify({"error": "shipping_address, payment_method, and items (array) are required"}), 400

    total_amount = 0
    valid_items = []
    for it in items:
        if not isinstance(it, dict):
            continue
        product = store.get_product(_int(it.get("product_id")))
        if not product or product["status"] != "Available":
            log(f"Skipping unavailable product {it.get('product_id')}", "WARNING")
            continue
        qty = max(1, _int(it.get("quantity")) or 1)
        valid_items.append({"product_id": product["id"], "quantity": qty, "price_at_time": product["price"]})
        total_amount += product["price"] * qty
    if not valid_items:
        return jsonify({"error": "No valid items to order"}), 400

    order = store.create_order(user_id, str(shipping_address), str(payment_method), total_amount, valid_items)
    store.remove_cart_items(user_id, [it["product_id"] for it in valid_items])
    log(f"Order {order['id']} placed by user_id={user_id}, total={total_amount}", "SUCCESS")
    items_out = order_items(store, order["id"], product_map(store), with_image=True)
    return jsonify({"order": {**order, "items": items_out}}), 201


@app.route('/api/orders', methods=['GET'])
@require_auth
@fails_with("Failed to fetch orders")
def orders_list():
    store = get_store()
    products = product_map(store)
    orders = [
        {**o, "items": order_items(store, o["id"], products, with_image=True)}
        for o in store.list_orders(user_id=request.auth_user["id"])
    ]
    return jsonify({"orders": orders})


@app.route('/api/orders/<int:oid>/cancel', methods=['PATCH'])
@require_auth
@fails_with("Failed to cancel order")
def orders_cancel(oid):
    store = get_store()
    order = store.get_order(oid)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    if order["user_id"] != request.auth_user["id"]:
        return jsonify({"error": "Access denied"}), 403
    if order["status"] not in ("pending", "processing"):
        return jsonify({"error": "Only pending or processing orders can be cancelled"}), 400
    updated = store.update_order_status(oid, "cancelled")
    log(f"Order {oid} cancelled by its buyer", "SUCCESS")
    return jsonify({"order": {**updated, "items": order_items(store, oid, product_map(store), with_image=True)}})


@app.route('/api/admin/orders', methods=['GET'])
@require_staff
@fails_with("Failed to fetch orders")
def admin_orders_list():
    store = get_store()
    users = store.user_map()
    products = product_map(store)
    orders = [
        {
            **o,
            "user": users.get(o["user_id"]) or dict(UNKNOWN_USER),
            "items": order_items(store, o["id"], products),
        }
        for o in store.list_orders()
    ]
    return jsonify({"orders": orders})


@app.route('/api/admin/orders/<int:oid>', methods=['PATCH'])
@require_staff
@fails_with("Failed to update order")
def admin_orders_update(oid):
    status = _payload().get("status")
    if status not in ORDER_STATUSES:
        return jsonify({"error": "Valid status required: " + ", ".join(ORDER_STATUSES)}), 400
    store = get_store()
    if not store.get_order(oid):
        return jsonify({"error": "Order not found"}), 404
    order = store.update_order_status(oid, status)
    log(f"Order {oid} set to {status} by user_id={request.auth_user['id']}", "SUCCESS")
    return jsonify({
        "order": {
            **order,
            "user": store.user_map().get(order["user_id"]) or dict(UNKNOWN_USER),
            "items": order_items(store, oid, product_map(store)),
        }
    })


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({"ok": True})


if __name__ == '__main__':
    try:
        get_store()
        log(f"Starting Flask server on http://{config.HOST}:{config.PORT}", "INFO")
        app.run(host=config.HOST, port=config.PORT)
    except KeyboardInterrupt:
        log("Server shutdown initiated by user keyboard interruption", "WARNING")
    except OSError as e:
        log(f"Error starting server: {e}. Try another PORT.", "ERROR")
        raise SystemExit(1)
