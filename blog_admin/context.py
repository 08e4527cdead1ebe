"""
Application context
Builds and wires one set of collaborators: configuration, notifier, HTTP
client, services, query cache, query objects, session store and navigator.
"""

import logging
from typing import Optional

from .cache import QueryCache
from .client import HttpClient
from .config import Config
from .guard import Navigator, RouteGuard
from .notifier import Notifier
from .queries import AuthQueries, CommentQueries, PostQueries, TagQueries, UserQueries
from .services import (AuthService, CommentService, PostService, TagService,
                       UploadService, UserService)
from .session import SessionStore
from .storage import CredentialStore

logger = logging.getLogger(__name__)


class AdminContext:
    """Everything one admin client needs, created together and closed together"""

    def __init__(self, config: Optional[Config] = None, notifier: Optional[Notifier] = None,
                 cache: Optional[QueryCache] = None, storage: Optional[CredentialStore] = None):
        self.config = config or Config()
        self.notifier = notifier or Notifier()
        self.cache = cache or QueryCache()
        self.storage = storage or CredentialStore(self.config.STORAGE_PATH)

        self.client = HttpClient(self.config, self.notifier)

        self.auth_service = AuthService(self.client)
        self.post_service = PostService(self.client)
        self.tag_service = TagService(self.client)
        self.comment_service = CommentService(self.client)
        self.user_service = UserService(self.client)
        self.upload = UploadService(self.client)

        self.guard = RouteGuard(login_path=self.config.LOGIN_PATH, default_path=self.config.DEFAULT_PATH)
        self.navigator = Navigator(self.guard)
        self.session = SessionStore(self.auth_service, self.storage, self.cache, self.notifier, self.navigator)

        # The client reads the token from the session and reports 401s back to it
        self.client.token_provider = lambda: self.session.token
        self.client.on_unauthorized = self.session.expire
        self.navigator.token_provider = lambda: self.session.token

        self.posts = PostQueries(self.post_service, self.cache, self.notifier)
        self.tags = TagQueries(self.tag_service, self.cache, self.notifier)
        self.comments = CommentQueries(self.comment_service, self.cache, self.notifier)
        self.users = UserQueries(self.user_service, self.cache, self.notifier)
        self.auth = AuthQueries(self.auth_service, self.cache, self.notifier)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self, restore: bool = True):
        """Open the HTTP session and restore persisted credentials"""
        await self.client.start()
        await self.storage.init()
        if restore:
            await self.session.initialize()

    async def close(self):
        await self.session.close()
        await self.cache.settle()
        await self.client.close()
        logger.debug("Admin context closed")
