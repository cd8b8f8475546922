from __future__ import annotations

import logging
from typing import Dict, Optional

from flask import (
    Blueprint,
    Flask,
    current_app,
    g,
    jsonify,
    request,
    send_from_directory,
)
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import config
from admin import AdminCredentials
from auth import TokenIssuer, token_required
from errors import AuthError, BlogError, NotFoundError, ValidationError
from images import LocalImageStorage, build_image_storage
from posts import PostRepository, build_excerpt, render_markdown
from storage import build_store, timestamp

log = logging.getLogger(__name__)

bp = Blueprint("blog", __name__)


class BlogServices:
    def __init__(self, store, posts, admin, tokens, images) -> None:
        self.store = store
        self.posts = posts
        self.admin = admin
        self.tokens = tokens
        self.images = images


def services() -> BlogServices:
    return current_app.extensions["blog"]


def check_default_credentials(settings, admin: AdminCredentials) -> None:
    strict = settings["REFUSE_DEFAULT_CREDENTIALS"] and settings["APP_ENV"] == "production"
    if admin.uses_password(config.DEFAULT_ADMIN_PASSWORD):
        if strict:
            raise RuntimeError(
                "Refusing to start: the admin account still uses the default password. "
                "Set ADMIN_PASSWORD and remove the stored admin record."
            )
        log.warning("INSECURE: the admin account uses the default password, set ADMIN_PASSWORD")
    if settings["JWT_SECRET"] == config.DEFAULT_JWT_SECRET:
        if strict:
            raise RuntimeError("Refusing to start: JWT_SECRET is not set")
        log.warning("INSECURE: tokens are signed with the default JWT_SECRET")


def create_app(overrides: Optional[Dict] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(config.as_dict())
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    CORS(
        app,
        origins=app.config["CORS_ORIGINS"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    store = build_store(app.config)
    images = build_image_storage(app.config)
    posts = PostRepository(store, locator=app.config["POSTS_FILE"], images=images)
    admin = AdminCredentials(
        store,
        username=app.config["ADMIN_USER"],
        password=app.config["ADMIN_PASSWORD"],
        locator=app.config["ADMIN_FILE"],
    )
    posts.initialize(seed=app.config["SEED_SAMPLE_POSTS"])
    admin.initialize()
    check_default_credentials(app.config, admin)
    tokens = TokenIssuer(app.config["JWT_SECRET"], admin, ttl_hours=app.config["TOKEN_TTL_HOURS"])

    app.extensions["blog"] = BlogServices(store, posts, admin, tokens, images)
    app.register_blueprint(bp)
    log.info("Blog API ready (storage=%s, images=%s)", store.name, images.name)
    return app


def int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def request_payload() -> Dict:
    if request.is_json:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return dict(body)
    data = request.form.to_dict()
    if len(request.form.getlist("tags")) > 1:
        data["tags"] = request.form.getlist("tags")
    return data


def store_upload() -> Optional[str]:
    upload = request.files.get("image")
    if upload is None or not upload.filename:
        return None
    return services().images.save(upload)


def with_excerpt(post: Dict) -> Dict:
    return dict(post, excerpt=build_excerpt(render_markdown(post.get("content", ""))))


def with_html(post: Dict) -> Dict:
    return dict(post, contentHtml=render_markdown(post.get("content", "")))


@bp.route("/health")
def health():
    svc = services()
    return jsonify(
        {
            "status": "ok",
            "storage": svc.store.name,
            "images": svc.images.name,
            "timestamp": timestamp(),
        }
    )


@bp.route("/auth/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) if request.is_json else request.form
    if not isinstance(data, dict):
        data = {}
    username = data.get("username")
    password = data.get("password")
    if not username or not password:
        raise ValidationError("Username and password are required")

    svc = services()
    if not svc.admin.verify(username, password):
        raise AuthError("Invalid credentials")
    current_app.logger.info("Admin %s logged in", username)
    return jsonify(
        {
            "message": "Login successful",
            "token": svc.tokens.issue(username),
            "user": {"username": username},
        }
    )


@bp.route("/auth/verify")
@token_required
def verify_token():
    return jsonify({"valid": True, "user": g.admin})


@bp.route("/posts", methods=["GET"])
def list_posts():
    posts = services().posts.search_published(request.args.get("search"))
    return jsonify([with_excerpt(p) for p in posts])


@bp.route("/posts/admin", methods=["GET"])
@token_required
def admin_posts():
    page = int_arg("page", 1)
    page_size = int_arg("pageSize", int_arg("limit", 10))
    return jsonify(services().posts.list_all_paginated(page, page_size))


@bp.route("/posts/<post_id>", methods=["GET"])
def get_post(post_id: str):
    repo = services().posts
    post = repo.get_by_id(post_id) or repo.get_by_slug(post_id)
    if not post or post.get("isPublished") is not True:
        raise NotFoundError("Post not found")
    post = repo.increment_views(post["id"]) or post
    return jsonify(with_html(post))


@bp.route("/posts", methods=["POST"])
@token_required
def create_post():
    data = request_payload()
    uploaded = store_upload()
    if uploaded:
        data["image"] = uploaded
    try:
        post = services().posts.create(data)
    except BlogError:
        services().images.discard(uploaded)
        raise
    return jsonify({"message": "Post created successfully", "post": post}), 201


@bp.route("/posts/<post_id>", methods=["PUT"])
@token_required
def update_post(post_id: str):
    data = request_payload()
    uploaded = store_upload()
    if uploaded:
        data["image"] = uploaded
    try:
        post = services().posts.update(post_id, data)
        if post is None:
            raise NotFoundError("Post not found")
    except BlogError:
        services().images.discard(uploaded)
        raise
    return jsonify({"message": "Post updated successfully", "post": post})


@bp.route("/posts/<post_id>", methods=["DELETE"])
@token_required
def delete_post(post_id: str):
    if not services().posts.delete(post_id):
        raise NotFoundError("Post not found")
    return jsonify({"message": "Post deleted successfully"})


@bp.route("/uploads/<path:filename>")
def uploaded_file(filename: str):
    images = services().images
    if not isinstance(images, LocalImageStorage):
        raise NotFoundError("Image not found")
    return send_from_directory(images.upload_dir, filename)


@bp.route("/admin/storage-check")
@token_required
def storage_check():
    store = services().store
    locator = "storage-check"
    sample = {"check": True, "timestamp": timestamp()}
    ok = store.write(locator, sample) and store.read(locator, None) == sample
    store.remove(locator)
    payload = {
        "storage": store.name,
        "writable": ok,
        "message": "Storage is writable" if ok else "Storage write failed",
    }
    return jsonify(payload), 200 if ok else 503


@bp.app_errorhandler(BlogError)
def handle_blog_error(exc: BlogError):
    if exc.status_code >= 500:
        current_app.logger.warning("%s: %s", type(exc).__name__, exc.message)
    return jsonify({"message": exc.message}), exc.status_code


@bp.app_errorhandler(RequestEntityTooLarge)
def handle_too_large(exc: RequestEntityTooLarge):
    return jsonify({"message": "Upload too large"}), 413


@bp.app_errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    return jsonify({"message": exc.description or exc.name}), exc.code


@bp.app_errorhandler(Exception)
def handle_unexpected(exc: Exception):
    current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"message": "Internal server error"}), 500


if __name__ == "__main__":
    create_app().run(debug=True)
