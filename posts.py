from __future__ import annotations

import logging
import math
import re
import secrets
import time
from typing import Dict, Iterable, List, Optional

from markdown import markdown
from slugify import slugify

from errors import StorageError, ValidationError
from storage import RecordStore, timestamp

log = logging.getLogger(__name__)

TITLE_MAX = 200
DESCRIPTION_MAX = 1000
EXCERPT_LENGTH = 150
LEGACY_UPLOAD_PREFIX = "/api/uploads/"

SAMPLE_POSTS = [
    {
        "title": "Welcome to the blog",
        "description": "A first post to show how things look before real content arrives.",
        "content": (
            "Welcome! This post was created when the blog started for the first time.\n\n"
            "## What is here\n\n"
            "- Notes on things I am learning\n"
            "- Write-ups of projects\n"
            "- The occasional longer essay\n\n"
            "Sign in to the admin panel to edit or delete this post."
        ),
        "tags": ["welcome", "getting-started"],
    },
]


def new_post_id(existing: Iterable[str] = ()) -> str:
    """Millisecond clock plus a random suffix, never equal to any id in ``existing``."""
    taken = set(existing)
    while True:
        candidate = f"{int(time.time() * 1000)}{secrets.token_hex(3)}"
        if candidate not in taken:
            return candidate


def parse_tags(raw) -> List[str]:
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    tags = (str(part).strip() for part in parts if part is not None)
    return [tag for tag in tags if tag]


def parse_bool(raw, default: bool = True) -> bool:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return bool(raw)
    value = str(raw).strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ValidationError(f"Invalid boolean value: {raw}")


def render_markdown(md_text: str) -> str:
    return markdown(
        md_text or "",
        extensions=["fenced_code", "tables", "sane_lists"],
        output_format="html5",
    )


def build_excerpt(html: str, length: int = EXCERPT_LENGTH) -> str:
    text = re.sub(r"<[^>]+>", "", html or "").strip()
    if len(text) <= length:
        return text
    return f"{text[:length].rstrip()}..."


def unique_slug(title: str, posts: List[Dict], exclude_id: Optional[str] = None) -> str:
    base = slugify(title or "") or "post"
    taken = {p.get("slug") for p in posts if p.get("id") != exclude_id}
    slug, suffix = base, 2
    while slug in taken:
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


def _text(value, field: str, max_length: Optional[int] = None, trim: bool = True) -> str:
    label = field.capitalize()
    if value is None:
        raise ValidationError(f"{label} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be text")
    if not value.strip():
        raise ValidationError(f"{label} is required")
    if trim:
        value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return value


def _image_ref(value) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Image must be a URL or path")
    return value.strip()


def normalize_post(raw: Dict, existing: List[Dict] = ()) -> Dict:
    """Bring a stored record written by an older version up to the current shape."""
    post = dict(raw)
    if "id" not in post and "_id" in post:
        post["id"] = post.pop("_id")
    taken = [p.get("id") for p in existing]
    if post.get("id") in (None, "") or str(post["id"]) in taken:
        post["id"] = new_post_id(taken)
    post["id"] = str(post["id"])

    for field in ("title", "description", "content"):
        post[field] = post.get(field) or ""
    post["title"] = post["title"].strip()
    post["description"] = post["description"].strip()
    post["image"] = post.get("image") or ""
    if post["image"].startswith(LEGACY_UPLOAD_PREFIX):
        post["image"] = "/uploads/" + post["image"][len(LEGACY_UPLOAD_PREFIX):]
    post["tags"] = parse_tags(post.get("tags"))
    try:
        post["isPublished"] = parse_bool(post.get("isPublished"), default=True)
    except ValidationError:
        post["isPublished"] = True
    try:
        post["views"] = max(int(post.get("views") or 0), 0)
    except (TypeError, ValueError):
        post["views"] = 0

    created = post.get("createdAt") or post.get("publishDate") or timestamp()
    post["createdAt"] = created
    post["publishDate"] = post.get("publishDate") or created
    post["updatedAt"] = max(post.get("updatedAt") or created, created)

    slugs_taken = [p for p in existing if p.get("id") != post["id"]]
    if not post.get("slug") or post["slug"] in {p.get("slug") for p in slugs_taken}:
        post["slug"] = unique_slug(post["title"], slugs_taken)
    return post


def _index_of(posts: List[Dict], post_id: str) -> Optional[int]:
    for idx, post in enumerate(posts):
        if post.get("id") == post_id:
            return idx
    return None


class PostRepository:
    """Post CRUD and queries on top of a record store.

    Every call re-reads the whole collection; mutations write the whole
    collection back.
    """

    def __init__(self, store: RecordStore, locator: str = "blogs", images=None) -> None:
        self.store = store
        self.locator = locator
        self.images = images

    def initialize(self, seed: bool = False) -> bool:
        return self.store.initialize(self.locator, self._sample_posts if seed else list)

    def _sample_posts(self) -> List[Dict]:
        posts: List[Dict] = []
        for sample in SAMPLE_POSTS:
            posts.append(self._build(sample, posts))
        return posts

    def _load(self) -> List[Dict]:
        posts = self.store.read(self.locator, [])
        if not isinstance(posts, list):
            log.warning("%s does not hold a list of posts, treating it as empty", self.locator)
            return []
        return posts

    def _save(self, posts: List[Dict]) -> None:
        if not self.store.write(self.locator, posts):
            raise StorageError("Could not save posts")

    def _discard_image(self, ref: Optional[str], posts: List[Dict]) -> None:
        if not ref or self.images is None or not self.images.owns(ref):
            return
        if any(p.get("image") == ref for p in posts):
            log.info("Keeping image %s, another post still uses it", ref)
            return
        self.images.discard(ref)

    def _build(self, data: Dict, posts: List[Dict]) -> Dict:
        title = _text(data.get("title"), "title", TITLE_MAX)
        description = _text(data.get("description"), "description", DESCRIPTION_MAX)
        content = _text(data.get("content"), "content", trim=False)
        stamp = timestamp()
        return {
            "id": new_post_id(p.get("id") for p in posts),
            "slug": unique_slug(title, posts),
            "title": title,
            "description": description,
            "content": content,
            "image": _image_ref(data.get("image")),
            "tags": parse_tags(data.get("tags")),
            "isPublished": parse_bool(data.get("isPublished"), default=True),
            "views": 0,
            "publishDate": stamp,
            "createdAt": stamp,
            "updatedAt": stamp,
        }

    def list_published(self) -> List[Dict]:
        return [p for p in self._load() if p.get("isPublished") is True]

    def search_published(self, term: Optional[str] = None) -> List[Dict]:
        posts = self.list_published()
        needle = (term or "").strip().lower()
        if not needle:
            return posts
        return [
            p
            for p in posts
            if needle in (p.get("title") or "").lower()
            or needle in (p.get("description") or "").lower()
            or any(needle in tag.lower() for tag in p.get("tags") or [])
        ]

    def list_all_paginated(self, page: int = 1, page_size: int = 10) -> Dict:
        if page < 1 or page_size < 1:
            raise ValidationError("page and pageSize must be positive integers")
        posts = self._load()
        total = len(posts)
        start = (page - 1) * page_size
        return {
            "items": posts[start:start + page_size],
            "totalCount": total,
            "currentPage": page,
            "totalPages": math.ceil(total / page_size),
        }

    def get_by_id(self, post_id: str) -> Optional[Dict]:
        posts = self._load()
        idx = _index_of(posts, post_id)
        return posts[idx] if idx is not None else None

    def get_by_slug(self, slug: str) -> Optional[Dict]:
        for post in self._load():
            if post.get("slug") == slug:
                return post
        return None

    def create(self, data: Dict) -> Dict:
        posts = self._load()
        post = self._build(data, posts)
        posts.insert(0, post)
        self._save(posts)
        log.info("Created post %s (%s)", post["id"], post["slug"])
        return post

    def _changes(self, data: Dict) -> Dict:
        changes: Dict = {}
        if data.get("title") is not None:
            changes["title"] = _text(data["title"], "title", TITLE_MAX)
        if data.get("description") is not None:
            changes["description"] = _text(data["description"], "description", DESCRIPTION_MAX)
        if data.get("content") is not None:
            changes["content"] = _text(data["content"], "content", trim=False)
        if data.get("image") is not None:
            changes["image"] = _image_ref(data["image"])
        if data.get("tags") is not None:
            changes["tags"] = parse_tags(data["tags"])
        if data.get("isPublished") not in (None, ""):
            changes["isPublished"] = parse_bool(data["isPublished"])
        return changes

    def update(self, post_id: str, data: Dict) -> Optional[Dict]:
        changes = self._changes(data)
        posts = self._load()
        idx = _index_of(posts, post_id)
        if idx is None:
            return None

        current = posts[idx]
        updated = {**current, **changes}
        if "title" in changes and changes["title"] != current.get("title"):
            updated["slug"] = unique_slug(changes["title"], posts, exclude_id=post_id)
        updated["updatedAt"] = max(timestamp(), current.get("updatedAt") or "")
        posts[idx] = updated
        self._save(posts)
        log.info("Updated post %s", post_id)

        old_image = current.get("image")
        if "image" in changes and old_image and old_image != updated["image"]:
            self._discard_image(old_image, posts)
        return updated

    def delete(self, post_id: str) -> bool:
        posts = self._load()
        idx = _index_of(posts, post_id)
        if idx is None:
            return False
        removed = posts.pop(idx)
        self._save(posts)
        log.info("Deleted post %s", post_id)
        self._discard_image(removed.get("image"), posts)
        return True

    def increment_views(self, post_id: str) -> Optional[Dict]:
        posts = self._load()
        idx = _index_of(posts, post_id)
        if idx is None:
            return None
        post = posts[idx]
        post["views"] = int(post.get("views") or 0) + 1
        if not self.store.write(self.locator, posts):
            log.warning("Could not persist view count for post %s", post_id)
        return post
