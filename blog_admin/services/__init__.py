from .auth import AuthService
from .base import ResourceService, batch_ids
from .comments import CommentService
from .posts import PostService
from .tags import TagService
from .upload import UploadService
from .users import UserService

__all__ = [
    'AuthService',
    'CommentService',
    'PostService',
    'ResourceService',
    'TagService',
    'UploadService',
    'UserService',
    'batch_ids',
]
