"""
Shared fixtures: an in-memory blog admin backend served by aiohttp's
TestServer, and clients/contexts pointed at it
"""

import asyncio
import itertools
import time
import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from blog_admin.config import Config
from blog_admin.context import AdminContext

PREFIX = '/api/v1/admin'
ADMIN_USERNAME = 'admin'
ADMIN_PASSWORD = 'Admin123!'

# Reachable without a bearer token
PUBLIC_PATHS = ('/auth/login', '/auth/refresh')

REQUIRED_FIELDS = {
    'posts': 'title',
    'tags': 'name',
    'comments': 'content',
    'users': 'username',
}

ID_PREFIXES = {'posts': 'p', 'tags': 't', 'comments': 'c', 'users': 'u'}


def now_iso():
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# FAKE BACKEND
# =============================================================================

class FakeBlogBackend:
    """In-memory blog admin API with both envelope and pagination shapes"""

    def __init__(self, envelope='standard', page_shape='modern', require_auth=True):
        self.envelope = envelope
        self.page_shape = page_shape  # 'modern' (page/limit/hasNext) or 'legacy' (current/pageSize/totalPages)
        self.require_auth = require_auth
        self.records = {'posts': {}, 'tags': {}, 'comments': {}, 'users': {}}
        self.passwords = {}
        self.tokens = {}
        self.refresh_tokens = {}
        self.calls = []
        self.failures = []
        self.gates = {}
        self.uploads = []
        self._ids = itertools.count(100)
        self._seed()
        self.app = self._build_app()

    # -- test controls -------------------------------------------------------

    def fail(self, method, path, status=500, message='Internal server error', body=None, times=1):
        """Answer the next `times` matching requests with an error"""
        self.failures.append({'method': method, 'path': path, 'status': status,
                              'message': message, 'body': body, 'times': times})

    def hold(self, method, path):
        """Block matching requests until the returned event is set"""
        gate = asyncio.Event()
        self.gates[(method, path)] = gate
        return gate

    def count(self, method, path):
        return sum(1 for call in self.calls if call == (method, path))

    def revoke_tokens(self):
        self.tokens.clear()

    # -- responses -----------------------------------------------------------

    def ok(self, data=None, status=200):
        if self.envelope == 'success':
            body = {'success': True, 'data': data, 'message': 'ok', 'code': status}
        else:
            body = {'code': status, 'message': 'success', 'data': data, 'timestamp': int(time.time() * 1000)}
        return web.json_response(body, status=status)

    def error(self, status, message, errors=None):
        if self.envelope == 'success':
            body = {'success': False, 'message': message, 'code': status}
        else:
            body = {'code': status, 'msg': message}
        if errors:
            body['errors'] = errors
        return web.json_response(body, status=status)

    def _page(self, items, page, limit, total, **siblings):
        total_pages = max(1, -(-total // limit))
        if self.page_shape == 'legacy':
            body = {'list': items, 'total': total, 'current': page, 'pageSize': limit, 'totalPages': total_pages}
        else:
            body = {'items': items, 'pagination': {'page': page, 'limit': limit, 'total': total,
                                                   'hasNext': page < total_pages, 'hasPrev': page > 1}}
        body.update(siblings)
        return body

    # -- data ----------------------------------------------------------------

    def _seed(self):
        stamp = now_iso()
        for user_id, username, role in (('u1', 'admin', 'admin'), ('u2', 'editor1', 'editor'),
                                        ('u3', 'author1', 'author')):
            self.records['users'][user_id] = {
                'id': user_id, 'username': username, 'email': f'{username}@example.com',
                'displayName': username.title(), 'role': role, 'status': 'active',
                'loginFailCount': 0, 'createdAt': stamp, 'updatedAt': stamp,
            }
        self.passwords = {'u1': ADMIN_PASSWORD, 'u2': 'Editor123!', 'u3': 'Author123!'}

        for tag_id, name in (('a', 'Python'), ('b', 'Asyncio'), ('c', 'Web')):
            self.records['tags'][tag_id] = {
                'id': tag_id, 'name': name, 'slug': name.lower(), 'visibility': 'public',
                'createdAt': stamp, 'updatedAt': stamp,
            }

        for i in range(1, 26):
            self.records['posts'][f'p{i}'] = {
                'id': f'p{i}', 'title': f'Post {i}', 'slug': f'post-{i}', 'content': f'# Post {i}',
                'status': 'published' if i % 2 else 'draft', 'visibility': 'public', 'authorId': 'u1',
                'tagIds': ['a', 'b'] if i % 3 == 0 else ['c'], 'viewCount': i * 10, 'commentCount': 0,
                'createdAt': stamp, 'updatedAt': stamp,
            }

        for i in range(1, 6):
            self.records['comments'][f'c{i}'] = {
                'id': f'c{i}', 'postId': 'p1', 'content': f'Comment {i}', 'authorName': f'Reader {i}',
                'authorEmail': f'reader{i}@example.com', 'status': 'pending', 'visibility': 'public',
                'type': 'comment', 'level': 0, 'replyCount': 0, 'likeCount': 0,
                'createdAt': stamp, 'updatedAt': stamp,
            }

    def _render(self, kind, record):
        record = dict(record)
        if kind == 'posts':
            record['tags'] = [self._render('tags', self.records['tags'][t])
                              for t in record.pop('tagIds', []) if t in self.records['tags']]
        elif kind == 'tags':
            record['postCount'] = sum(1 for p in self.records['posts'].values() if record['id'] in p['tagIds'])
        return record

    def _apply(self, kind, record, body):
        body = dict(body)
        if kind == 'posts':
            tags = body.pop('tags', None)
            if tags is not None:
                body['tagIds'] = [t['id'] if isinstance(t, dict) else t for t in tags]
        body.pop('id', None)
        record.update(body)
        record['updatedAt'] = now_iso()
        return record

    def _comment_stats(self):
        stats = {'total': len(self.records['comments'])}
        for status in ('pending', 'approved', 'rejected', 'spam'):
            stats[status] = sum(1 for c in self.records['comments'].values() if c['status'] == status)
        return stats

    # -- app -----------------------------------------------------------------

    def _build_app(self):
        @web.middleware
        async def control_middleware(request, handler):
            path = request.path[len(PREFIX):] if request.path.startswith(PREFIX) else request.path
            self.calls.append((request.method, path))

            gate = self.gates.get((request.method, path))
            if gate is not None:
                await gate.wait()

            for failure in list(self.failures):
                if failure['method'] == request.method and failure['path'] == path:
                    failure['times'] -= 1
                    if failure['times'] <= 0:
                        self.failures.remove(failure)
                    if isinstance(failure['body'], bytes):
                        return web.Response(body=failure['body'], status=failure['status'],
                                            content_type='application/json', charset='utf-8')
                    if failure['body'] is not None:
                        return web.json_response(failure['body'], status=failure['status'])
                    return self.error(failure['status'], failure['message'])

            if self.require_auth and path not in PUBLIC_PATHS:
                auth_header = request.headers.get('Authorization', '')
                token = auth_header[7:] if auth_header.startswith('Bearer ') else None
                if token not in self.tokens:
                    return self.error(401, 'Token expired or invalid')
                request['user_id'] = self.tokens[token]
                request['token'] = token
            return await handler(request)

        app = web.Application(middlewares=[control_middleware])
        r = app.router

        r.add_post(PREFIX + '/auth/login', self.login)
        r.add_post(PREFIX + '/auth/logout', self.logout)
        r.add_post(PREFIX + '/auth/refresh', self.refresh)
        r.add_get(PREFIX + '/auth/profile', self.profile)
        r.add_post(PREFIX + '/auth/change-password', self.change_password)
        r.add_post(PREFIX + '/upload', self.upload)

        r.add_get(PREFIX + '/tags/all', self.all_tags)
        r.add_get(PREFIX + '/tags/search', self.search_tags)
        r.add_get(PREFIX + '/comments/stats', self.comment_stats)

        for kind in self.records:
            base = f'{PREFIX}/{kind}'
            r.add_delete(base + '/batch', self._batch_delete(kind))
            r.add_patch(base + '/batch/status', self._batch_status(kind))
            r.add_get(base, self._list(kind))
            r.add_post(base, self._create(kind))
            r.add_get(base + '/{id}', self._get(kind))
            r.add_put(base + '/{id}', self._update(kind))
            r.add_delete(base + '/{id}', self._delete(kind))

        r.add_post(PREFIX + '/posts/{id}/publish', self.publish)
        r.add_post(PREFIX + '/posts/{id}/unpublish', self.unpublish)
        r.add_patch(PREFIX + '/comments/{id}/status', self._status('comments'))
        r.add_post(PREFIX + '/comments/{id}/approve', self._moderate('approved'))
        r.add_post(PREFIX + '/comments/{id}/reject', self._moderate('rejected'))
        r.add_post(PREFIX + '/comments/{id}/spam', self._moderate('spam'))
        r.add_post(PREFIX + '/comments/{id}/reply', self.reply)
        r.add_patch(PREFIX + '/users/{id}/status', self._status('users'))
        r.add_post(PREFIX + '/users/{id}/reset-password', self.reset_password)
        r.add_post(PREFIX + '/users/{id}/unlock', self.unlock)
        r.add_get(PREFIX + '/users/{id}/login-logs', self.login_logs)
        return app

    # -- auth ----------------------------------------------------------------

    def _issue(self, user_id):
        token = f'tok-{uuid.uuid4().hex}'
        refresh_token = f'ref-{uuid.uuid4().hex}'
        self.tokens[token] = user_id
        self.refresh_tokens[refresh_token] = user_id
        return {'token': token, 'refreshToken': refresh_token, 'user': dict(self.records['users'][user_id])}

    async def login(self, request):
        data = await request.json()
        for user in self.records['users'].values():
            if user['username'] == data.get('username') and self.passwords.get(user['id']) == data.get('password'):
                user['lastLoginAt'] = now_iso()
                return self.ok(self._issue(user['id']))
        return self.error(401, 'Invalid username or password')

    async def logout(self, request):
        data = await request.json()
        self.refresh_tokens.pop(data.get('refreshToken'), None)
        self.tokens.pop(request.get('token'), None)
        return self.ok()

    async def refresh(self, request):
        data = await request.json()
        user_id = self.refresh_tokens.pop(data.get('refreshToken'), None)
        if user_id is None:
            return self.error(401, 'Invalid refresh token')
        return self.ok(self._issue(user_id))

    async def profile(self, request):
        return self.ok(dict(self.records['users'][request['user_id']]))

    async def change_password(self, request):
        data = await request.json()
        user_id = request['user_id']
        if data.get('currentPassword') != self.passwords[user_id]:
            return self.error(400, 'Current password is incorrect')
        if len(data.get('newPassword') or '') < 6:
            return self.error(422, 'Password too short', {'newPassword': 'At least 6 characters'})
        self.passwords[user_id] = data['newPassword']
        return self.ok()

    async def upload(self, request):
        form = await request.post()
        upload = form['file']
        self.uploads.append({'filename': upload.filename, 'type': form.get('type'),
                             'size': len(upload.file.read())})
        return self.ok({'url': f'/uploads/{upload.filename}'})

    # -- generic resources ---------------------------------------------------

    def _list(self, kind):
        async def handler(request):
            q = request.query
            items = [self._render(kind, r) for r in self.records[kind].values()]
            for name in ('status', 'visibility', 'postId', 'role', 'authorId'):
                if q.get(name):
                    items = [i for i in items if i.get(name) == q[name]]
            if q.get('keyword'):
                keyword = q['keyword'].lower()
                items = [i for i in items
                         if any(keyword in str(i.get(f, '')).lower() for f in ('title', 'name', 'content', 'username'))]
            page = int(q.get('page', 1))
            limit = int(q.get('limit', 10))
            chunk = items[(page - 1) * limit:page * limit]
            siblings = {'stats': self._comment_stats()} if kind == 'comments' else {}
            return self.ok(self._page(chunk, page, limit, len(items), **siblings))
        return handler

    def _get(self, kind):
        async def handler(request):
            record = self.records[kind].get(request.match_info['id'])
            if record is None:
                return self.error(404, f'{kind[:-1].title()} not found')
            return self.ok(self._render(kind, record))
        return handler

    def _create(self, kind):
        async def handler(request):
            data = await request.json()
            required = REQUIRED_FIELDS[kind]
            if not data.get(required):
                return self.error(422, 'Validation failed', {required: f'{required} is required'})
            if kind == 'tags' and any(t['name'] == data['name'] for t in self.records['tags'].values()):
                return self.error(422, 'Tag name already exists', {'name': 'must be unique'})
            record_id = f'{ID_PREFIXES[kind]}{next(self._ids)}'
            record = {'id': record_id, 'createdAt': now_iso()}
            if kind == 'posts':
                record.update({'status': 'draft', 'visibility': 'public', 'tagIds': []})
            elif kind == 'comments':
                record.update({'status': 'pending', 'type': 'comment', 'level': 0})
            elif kind == 'users':
                record.update({'status': 'active', 'role': 'author'})
                self.passwords[record_id] = data.pop('password', 'Changeme1!')
            self.records[kind][record_id] = self._apply(kind, record, data)
            return self.ok(self._render(kind, record))
        return handler

    def _update(self, kind):
        async def handler(request):
            record = self.records[kind].get(request.match_info['id'])
            if record is None:
                return self.error(404, f'{kind[:-1].title()} not found')
            self._apply(kind, record, await request.json())
            return self.ok(self._render(kind, record))
        return handler

    def _delete(self, kind):
        async def handler(request):
            if self.records[kind].pop(request.match_info['id'], None) is None:
                return self.error(404, f'{kind[:-1].title()} not found')
            if kind == 'tags':
                for post in self.records['posts'].values():
                    post['tagIds'] = [t for t in post['tagIds'] if t != request.match_info['id']]
            return self.ok()
        return handler

    def _batch_delete(self, kind):
        async def handler(request):
            ids = (await request.json()).get('ids') or []
            if not ids:
                return self.error(400, 'ids must not be empty')
            deleted = [i for i in ids if self.records[kind].pop(i, None) is not None]
            if kind == 'tags':
                for post in self.records['posts'].values():
                    post['tagIds'] = [t for t in post['tagIds'] if t not in ids]
            return self.ok({'deleted': len(deleted)})
        return handler

    def _batch_status(self, kind):
        async def handler(request):
            data = await request.json()
            for record_id in data.get('ids') or []:
                if record_id in self.records[kind]:
                    self._apply(kind, self.records[kind][record_id], {'status': data['status']})
            return self.ok({'updated': len(data.get('ids') or [])})
        return handler

    def _status(self, kind):
        async def handler(request):
            record = self.records[kind].get(request.match_info['id'])
            if record is None:
                return self.error(404, f'{kind[:-1].title()} not found')
            self._apply(kind, record, {'status': (await request.json())['status']})
            return self.ok(self._render(kind, record))
        return handler

    # -- entity actions ------------------------------------------------------

    async def all_tags(self, request):
        return self.ok([self._render('tags', t) for t in self.records['tags'].values()])

    async def search_tags(self, request):
        keyword = request.query.get('q', '').lower()
        return self.ok([self._render('tags', t) for t in self.records['tags'].values()
                        if keyword in t['name'].lower()])

    async def comment_stats(self, request):
        return self.ok(self._comment_stats())

    async def publish(self, request):
        post = self.records['posts'].get(request.match_info['id'])
        if post is None:
            return self.error(404, 'Post not found')
        data = await request.json() if request.can_read_body else {}
        self._apply('posts', post, {'status': 'published', 'publishedAt': data.get('publishedAt') or now_iso()})
        return self.ok(self._render('posts', post))

    async def unpublish(self, request):
        post = self.records['posts'].get(request.match_info['id'])
        if post is None:
            return self.error(404, 'Post not found')
        self._apply('posts', post, {'status': 'draft'})
        return self.ok(self._render('posts', post))

    def _moderate(self, status):
        async def handler(request):
            comment = self.records['comments'].get(request.match_info['id'])
            if comment is None:
                return self.error(404, 'Comment not found')
            changes = {'status': status}
            if status == 'approved':
                changes['approvedAt'] = now_iso()
            self._apply('comments', comment, changes)
            return self.ok(dict(comment))
        return handler

    async def reply(self, request):
        parent = self.records['comments'].get(request.match_info['id'])
        if parent is None:
            return self.error(404, 'Comment not found')
        data = await request.json()
        reply_id = f'c{next(self._ids)}'
        reply = {
            'id': reply_id, 'postId': parent['postId'], 'parentId': parent['id'], 'content': data['content'],
            'authorName': self.records['users'][request['user_id']]['username'], 'status': 'approved',
            'visibility': 'public', 'type': 'reply', 'level': parent.get('level', 0) + 1,
            'createdAt': now_iso(),
        }
        self.records['comments'][reply_id] = reply
        parent['replyCount'] = parent.get('replyCount', 0) + 1
        return self.ok(dict(reply))

    async def reset_password(self, request):
        user_id = request.match_info['id']
        if user_id not in self.records['users']:
            return self.error(404, 'User not found')
        self.passwords[user_id] = (await request.json())['newPassword']
        return self.ok()

    async def unlock(self, request):
        user = self.records['users'].get(request.match_info['id'])
        if user is None:
            return self.error(404, 'User not found')
        self._apply('users', user, {'status': 'active', 'loginFailCount': 0, 'lockedUntil': None})
        return self.ok(dict(user))

    async def login_logs(self, request):
        user_id = request.match_info['id']
        logs = [{'id': f'l{i}', 'userId': user_id, 'ip': '127.0.0.1', 'success': i % 4 != 0,
                 'createdAt': now_iso()} for i in range(1, 13)]
        page = int(request.query.get('page', 1))
        limit = int(request.query.get('limit', 10))
        return self.ok(self._page(logs[(page - 1) * limit:page * limit], page, limit, len(logs)))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def backend():
    return FakeBlogBackend()


@pytest.fixture
def make_backend():
    return FakeBlogBackend


@pytest_asyncio.fixture
async def serve():
    """Start a TestServer for any backend; all are closed after the test"""
    servers = []

    async def start(app_backend):
        server = TestServer(app_backend.app)
        await server.start_server()
        servers.append(server)
        return server

    yield start
    for server in servers:
        await server.close()


@pytest_asyncio.fixture
async def server(backend, serve):
    return await serve(backend)


@pytest.fixture
def config_for(tmp_path):
    def make(server, envelope='standard'):
        return Config(api_base_url=str(server.make_url(PREFIX)), request_timeout=5,
                      envelope=envelope, storage_path=str(tmp_path / 'session.db'))
    return make


@pytest.fixture
def config(server, config_for):
    return config_for(server)


@pytest_asyncio.fixture
async def ctx(config):
    context = AdminContext(config)
    await context.start()
    yield context
    await context.close()


@pytest_asyncio.fixture
async def admin(ctx):
    """Context signed in as the seeded administrator"""
    await ctx.session.login(ADMIN_USERNAME, ADMIN_PASSWORD)
    ctx.notifier.clear()
    return ctx
