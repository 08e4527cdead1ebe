"""
Persisted credentials
A small SQLite key/value table holding token, refreshToken and user so a
session survives a restart. It is a derived cache of the session store and is
always cleared in full.
"""

import json
import logging
from typing import Any, Dict, Optional

import aiosqlite

from .models import Session, User

logger = logging.getLogger(__name__)

TOKEN_KEY = 'token'
REFRESH_TOKEN_KEY = 'refreshToken'
USER_KEY = 'user'


class CredentialStore:
    """aiosqlite-backed credential storage"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._ready = False

    async def _execute(self, query, params=None, fetch=None):
        async with aiosqlite.connect(self.db_path) as db:
            if fetch:
                db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params or ())
            if fetch == 'one':
                result = await cursor.fetchone()
            elif fetch == 'all':
                result = await cursor.fetchall()
            else:
                result = None
            await db.commit()
            return result

    async def init(self):
        if self._ready:
            return
        await self._execute("CREATE TABLE IF NOT EXISTS credentials (key TEXT PRIMARY KEY, value TEXT)")
        self._ready = True
        logger.debug(f"Credential store ready at {self.db_path}")

    async def get(self, key: str) -> Optional[str]:
        await self.init()
        row = await self._execute("SELECT value FROM credentials WHERE key = ?", (key,), 'one')
        return row['value'] if row else None

    async def set(self, key: str, value: Optional[str]):
        await self.init()
        if value is None:
            await self._execute("DELETE FROM credentials WHERE key = ?", (key,))
        else:
            await self._execute("INSERT OR REPLACE INTO credentials (key, value) VALUES (?, ?)", (key, value))

    async def items(self) -> Dict[str, str]:
        await self.init()
        rows = await self._execute("SELECT key, value FROM credentials", fetch='all')
        return {row['key']: row['value'] for row in rows}

    async def load(self) -> Optional[Session]:
        """Restore the persisted session, or None when there is no usable token"""
        stored = await self.items()
        token = stored.get(TOKEN_KEY)
        if not token:
            return None

        user_data: Dict[str, Any] = {}
        if stored.get(USER_KEY):
            try:
                user_data = json.loads(stored[USER_KEY])
            except ValueError:
                logger.warning("Persisted user record is not valid JSON, ignoring it")

        user = User.from_dict(user_data)
        return Session(user_id=user.id, username=user.username, role=user.role, token=token,
                       refresh_token=stored.get(REFRESH_TOKEN_KEY), user=user)

    async def save(self, session: Session):
        await self.set(TOKEN_KEY, session.token)
        await self.set(REFRESH_TOKEN_KEY, session.refresh_token)
        await self.set(USER_KEY, json.dumps(session.user.to_dict()))
        logger.debug(f"Persisted credentials for {session.username}")

    async def clear(self):
        await self.init()
        await self._execute("DELETE FROM credentials")
        logger.debug("Cleared persisted credentials")
