import pytest
from aiohttp import ClientSession, web
from aiohttp.test_utils import TestServer

from blog_admin.guard import GuardDecision, Navigator, RouteGuard, check_route, guard_middleware


@pytest.mark.parametrize('path, has_token, expected', [
    ('/', False, GuardDecision.REDIRECT_LOGIN),
    ('/', True, GuardDecision.REDIRECT_LOGIN),
    ('/posts', False, GuardDecision.REDIRECT_LOGIN),
    ('/posts', True, GuardDecision.ALLOW),
    ('/posts/new', False, GuardDecision.REDIRECT_LOGIN),
    ('/posts/42/edit', True, GuardDecision.ALLOW),
    ('/posts/42/preview', False, GuardDecision.REDIRECT_LOGIN),
    ('/tags', False, GuardDecision.REDIRECT_LOGIN),
    ('/comments', False, GuardDecision.REDIRECT_LOGIN),
    ('/users', False, GuardDecision.REDIRECT_LOGIN),
    ('/login', False, GuardDecision.ALLOW),
    ('/login', True, GuardDecision.REDIRECT_DEFAULT),
    ('/about', False, GuardDecision.ALLOW),
])
def test_decision_table(path, has_token, expected):
    assert check_route(path, has_token) is expected


def test_prefixes_match_whole_segments():
    guard = RouteGuard()
    assert guard.decide('/postscript', False) is GuardDecision.ALLOW
    assert guard.decide('/loginhelp', True) is GuardDecision.ALLOW


def test_query_string_and_trailing_slash_are_ignored():
    guard = RouteGuard()
    assert guard.decide('/posts/?page=2', False) is GuardDecision.REDIRECT_LOGIN
    assert guard.decide('/login?next=/tags', True) is GuardDecision.REDIRECT_DEFAULT


def test_redirect_targets():
    guard = RouteGuard(login_path='/signin', default_path='/dashboard')
    assert guard.redirect_target(GuardDecision.REDIRECT_LOGIN) == '/signin'
    assert guard.redirect_target(GuardDecision.REDIRECT_DEFAULT) == '/dashboard'
    assert guard.redirect_target(GuardDecision.ALLOW) is None


class TestNavigator:

    def test_navigation_follows_token(self):
        token = {'value': None}
        navigator = Navigator(RouteGuard(), lambda: token['value'])

        assert navigator.navigate('/comments') == '/login'
        token['value'] = 'tok'
        assert navigator.navigate('/comments') == '/comments'
        assert navigator.navigate('/login') == '/posts'
        assert navigator.history == ['/login', '/comments', '/posts']

    def test_redirect_to_login_notifies_listeners(self):
        navigator = Navigator()
        seen = []
        navigator.subscribe(seen.append)
        navigator.redirect_to_login()
        assert navigator.current_path == '/login'
        assert seen == ['/login']


class TestMiddleware:

    @pytest.mark.asyncio
    async def test_redirects_like_the_guard(self):
        async def page(request):
            return web.Response(text=f'page {request.path}')

        app = web.Application(middlewares=[guard_middleware(RouteGuard())])
        for path in ('/', '/login', '/posts', '/posts/{id}/edit'):
            app.router.add_get(path, page)

        server = TestServer(app)
        await server.start_server()
        try:
            async with ClientSession() as session:
                async def fetch(path, token=None):
                    headers = {'Cookie': f'token={token}'} if token else None
                    async with session.get(server.make_url(path), allow_redirects=False,
                                           headers=headers) as response:
                        return response.status, response.headers.get('Location')

                assert await fetch('/posts') == (302, '/login')
                assert await fetch('/') == (302, '/login')
                assert (await fetch('/login'))[0] == 200
                assert await fetch('/login', 'tok') == (302, '/posts')
                assert (await fetch('/posts/7/edit', 'tok'))[0] == 200
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_bearer_header_counts_as_token(self):
        async def page(request):
            return web.Response(text='ok')

        app = web.Application(middlewares=[guard_middleware()])
        app.router.add_get('/users', page)

        server = TestServer(app)
        await server.start_server()
        try:
            async with ClientSession() as session:
                async with session.get(server.make_url('/users'), allow_redirects=False,
                                       headers={'Authorization': 'Bearer tok'}) as response:
                    assert response.status == 200
        finally:
            await server.close()
