"""
Entity records, list queries and page normalisation

Attributes are snake_case; the backend speaks camelCase. Records accept both
on input and always emit camelCase. Canonical shapes:
- posts carry `content` (legacy `markdown` is accepted on input)
- pages carry page/limit/total/hasNext/hasPrev (legacy
  current/pageSize/totalPages is adapted)
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# ENUMS
# =============================================================================

class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class PostVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PASSWORD = "password"


class TagVisibility(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"


class CommentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SPAM = "spam"


class CommentVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class CommentType(str, Enum):
    COMMENT = "comment"
    REPLY = "reply"


class UserRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    AUTHOR = "author"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    LOCKED = "locked"


# =============================================================================
# WIRE HELPERS
# =============================================================================

# Legacy input names -> canonical wire names
LEGACY_ALIASES = {
    'markdown': 'content',
}


def camel(name: str) -> str:
    """snake_case -> camelCase"""
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def _wire_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_wire_value(v) for v in value]
    return value


def to_wire(payload: Union[Mapping[str, Any], 'Record', None]) -> Dict[str, Any]:
    """Render an input payload with camelCase keys, enum values and canonical field names"""
    if payload is None:
        return {}
    if isinstance(payload, Record):
        return payload.to_dict()

    wire = {}
    for key, value in payload.items():
        name = camel(key) if '_' in key else key
        if name in LEGACY_ALIASES:
            canonical = LEGACY_ALIASES[name]
            logger.debug(f"Mapping legacy field '{name}' to '{canonical}'")
            if canonical in payload:
                continue
            name = canonical
        wire[name] = _wire_value(value)
    return wire


def parse_enum(enum_cls: Type[Enum], value: Any) -> Any:
    """Return the enum member, or the raw value when the backend sends something unknown"""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} value from backend: {value!r}")
        return value


def _enum_field(enum_cls, default=None):
    return field(default=default, metadata={'convert': lambda v: parse_enum(enum_cls, v)})


def _records_field(record_cls_name: str):
    # Resolved lazily so Comment can nest Comment
    def convert(items):
        record_cls = RECORD_TYPES[record_cls_name]
        return [record_cls.from_dict(item) if isinstance(item, dict) else item for item in items or []]
    return field(default_factory=list, metadata={'convert': convert})


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class Record:
    """Base for backend entities"""

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any]) -> T:
        kwargs = {}
        for f in fields(cls):
            aliases = [camel(f.name), f.name] + list(f.metadata.get('aliases', ()))
            for name in aliases:
                if name in data:
                    value = data[name]
                    convert = f.metadata.get('convert')
                    kwargs[f.name] = convert(value) if convert and value is not None else value
                    break
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {camel(f.name): _wire_value(getattr(self, f.name))
                for f in fields(self) if getattr(self, f.name) is not None}


@dataclass
class Tag(Record):
    id: str = ""
    name: str = ""
    slug: str = ""
    description: Optional[str] = None
    color: Optional[str] = None
    featured_image: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    visibility: Any = _enum_field(TagVisibility, TagVisibility.PUBLIC)
    post_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Post(Record):
    id: str = ""
    title: str = ""
    slug: str = ""
    content: str = field(default="", metadata={'aliases': ('markdown',)})
    excerpt: Optional[str] = None
    status: Any = _enum_field(PostStatus, PostStatus.DRAFT)
    visibility: Any = _enum_field(PostVisibility, PostVisibility.PUBLIC)
    password: Optional[str] = None
    featured_image: Optional[str] = None
    published_at: Optional[str] = None
    author_id: Optional[str] = None
    author: Optional[Dict[str, Any]] = None
    tags: List[Tag] = _records_field('Tag')
    view_count: int = 0
    comment_count: int = 0
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Comment(Record):
    id: str = ""
    post_id: Optional[str] = None
    parent_id: Optional[str] = None
    content: str = ""
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_website: Optional[str] = None
    author_ip: Optional[str] = None
    user_agent: Optional[str] = None
    status: Any = _enum_field(CommentStatus, CommentStatus.PENDING)
    visibility: Any = _enum_field(CommentVisibility, CommentVisibility.PUBLIC)
    type: Any = _enum_field(CommentType, CommentType.COMMENT)
    level: int = 0
    reply_count: int = 0
    like_count: int = 0
    post: Optional[Dict[str, Any]] = None
    replies: List['Comment'] = _records_field('Comment')
    approved_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class User(Record):
    id: str = ""
    username: str = ""
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Any = _enum_field(UserRole, UserRole.AUTHOR)
    status: Any = _enum_field(UserStatus, UserStatus.ACTIVE)
    profile_image: Optional[str] = None
    bio: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    login_fail_count: int = 0
    locked_until: Optional[str] = None
    last_login_at: Optional[str] = None
    last_login_ip: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


RECORD_TYPES = {cls.__name__: cls for cls in (Tag, Post, Comment, User)}


@dataclass
class Session:
    """Authenticated session as held by the session store"""
    user_id: str
    username: str
    role: Any
    token: str
    refresh_token: Optional[str]
    user: User

    @classmethod
    def from_login(cls, payload: Mapping[str, Any]) -> 'Session':
        """Build from {token, refreshToken, user}"""
        user = User.from_dict(payload.get('user') or {})
        return cls(
            user_id=user.id,
            username=user.username,
            role=user.role,
            token=payload.get('token') or '',
            refresh_token=payload.get('refreshToken') or payload.get('refresh_token'),
            user=user,
        )


# =============================================================================
# PAGES
# =============================================================================

@dataclass
class Page:
    """Normalised page of records"""
    items: List[Any]
    page: int
    limit: int
    total: int
    has_next: bool
    has_prev: bool
    extra: Dict[str, Any] = field(default_factory=dict)

    def ids(self) -> List[str]:
        return [getattr(item, 'id', None) for item in self.items]


PAGE_ITEM_FIELDS = ('list', 'items')


def normalize_page(payload: Any, parse_item: Callable[[Any], Any] = lambda item: item) -> Page:
    """Present both backend pagination shapes as one Page"""
    if isinstance(payload, list):
        items = [parse_item(item) for item in payload]
        return Page(items=items, page=1, limit=len(items), total=len(items),
                    has_next=False, has_prev=False)

    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected page payload: {type(payload).__name__}")

    raw_items = []
    for name in PAGE_ITEM_FIELDS:
        if name in payload:
            raw_items = payload[name] or []
            break
    items = [parse_item(item) for item in raw_items]

    meta = payload.get('pagination')
    if not isinstance(meta, dict):
        meta = payload

    page = int(meta.get('page', meta.get('current', 1)) or 1)
    limit = int(meta.get('limit', meta.get('pageSize', len(items))) or 0)
    total = int(meta.get('total', len(items)) or 0)

    if 'hasNext' in meta:
        has_next = bool(meta['hasNext'])
    elif 'totalPages' in meta:
        has_next = page < int(meta['totalPages'] or 0)
    else:
        has_next = limit > 0 and page * limit < total
    has_prev = bool(meta['hasPrev']) if 'hasPrev' in meta else page > 1

    # Siblings of the pagination block, e.g. comment stats
    extra = {}
    if meta is not payload:
        extra = {k: v for k, v in payload.items() if k not in PAGE_ITEM_FIELDS + ('pagination',)}
    return Page(items=items, page=page, limit=limit, total=total,
                has_next=has_next, has_prev=has_prev, extra=extra)


# =============================================================================
# LIST QUERIES
# =============================================================================

SORT_ORDERS = ('asc', 'desc')


@dataclass
class ListQuery:
    """Server-side pagination, search, date range and sorting"""
    page: Optional[int] = None
    limit: Optional[int] = None
    keyword: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None

    def __post_init__(self):
        if self.sort_order is not None and self.sort_order not in SORT_ORDERS:
            raise ValueError(f"sort_order must be one of {SORT_ORDERS}, got {self.sort_order!r}")
        if self.page is not None and self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be >= 1")

    def to_params(self) -> Dict[str, Any]:
        params = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == '':
                continue
            params[camel(f.name)] = value.value if isinstance(value, Enum) else value
        return params


@dataclass
class PostQuery(ListQuery):
    status: Optional[PostStatus] = None
    visibility: Optional[PostVisibility] = None
    tag_id: Optional[str] = None
    author_id: Optional[str] = None


@dataclass
class TagQuery(ListQuery):
    visibility: Optional[TagVisibility] = None


@dataclass
class CommentQuery(ListQuery):
    status: Optional[CommentStatus] = None
    visibility: Optional[CommentVisibility] = None
    post_id: Optional[str] = None


@dataclass
class UserQuery(ListQuery):
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
