"""
Command-line admin client

    python -m blog_admin [--base-url URL] [--debug] <command> [args]
"""

import asyncio
import logging
import sys
from typing import List

from .config import Config, configure_logging
from .context import AdminContext
from .errors import ApiError
from .guard import GuardDecision
from .models import CommentQuery, CommentStatus, PostQuery

logger = logging.getLogger(__name__)

USAGE = """Blog admin client usage:
  python -m blog_admin [--base-url URL] [--debug] <command>

Commands:
  login <username> <password>   Sign in and persist the session
  logout                        Sign out and clear persisted credentials
  whoami                        Show the signed-in user
  posts [page] [limit]          List posts
  tags                          List the tag catalogue
  comments [status]             List comments, optionally by status
  route <path>                  Show where the route guard sends a path
  help                          Show this help"""


def parse_args(argv: List[str]):
    """Split global options from the command and its arguments"""
    options = {'base_url': None, 'debug': False}
    args = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == '--base-url':
            if i + 1 >= len(argv):
                raise ValueError("--base-url needs a value")
            options['base_url'] = argv[i + 1]
            i += 2
            continue
        if arg.startswith('--base-url='):
            options['base_url'] = arg.split('=', 1)[1]
        elif arg == '--debug':
            options['debug'] = True
        else:
            args.append(arg)
        i += 1
    return options, args


def _status(value) -> str:
    return getattr(value, 'value', value) or '-'


async def run_command(ctx: AdminContext, command: str, args: List[str]) -> int:
    if command == 'login':
        if len(args) < 2:
            print("Usage: login <username> <password>")
            return 2
        session = await ctx.session.login(args[0], args[1])
        print(f"Signed in as {session.username} ({_status(session.role)})")
        return 0

    if command == 'logout':
        if not ctx.session.is_authenticated:
            print("Not signed in")
            return 0
        await ctx.session.logout()
        print("Signed out")
        return 0

    if command == 'whoami':
        if not ctx.session.is_authenticated:
            print("Not signed in")
            return 1
        user = await ctx.auth.profile()
        print(f"{user.username} <{user.email or '-'}> role={_status(user.role)} status={_status(user.status)}")
        return 0

    if command == 'posts':
        try:
            page = int(args[0]) if len(args) > 0 else 1
            limit = int(args[1]) if len(args) > 1 else 20
        except ValueError:
            print("Usage: posts [page] [limit]")
            return 2
        result = await ctx.posts.list(PostQuery(page=page, limit=limit))
        print(f"Posts page {result.page} ({len(result.items)} of {result.total})")
        for post in result.items:
            print(f"  {post.id}  [{_status(post.status)}]  {post.title}")
        return 0

    if command == 'tags':
        tags = await ctx.tags.all()
        print(f"{len(tags)} tags")
        for tag in tags:
            print(f"  {tag.id}  {tag.name}  ({tag.post_count} posts)")
        return 0

    if command == 'comments':
        try:
            query = CommentQuery(status=CommentStatus(args[0])) if args else CommentQuery()
        except ValueError:
            print(f"Unknown comment status: {args[0]} (one of: {', '.join(s.value for s in CommentStatus)})")
            return 2
        result = await ctx.comments.list(query)
        print(f"Comments page {result.page} ({len(result.items)} of {result.total})")
        for comment in result.items:
            print(f"  {comment.id}  [{_status(comment.status)}]  {comment.author_name or '-'}: {comment.content[:60]}")
        return 0

    if command == 'route':
        if not args:
            print("Usage: route <path>")
            return 2
        location = ctx.navigator.navigate(args[0])
        decision = ctx.guard.decide(args[0], bool(ctx.session.token))
        if decision is GuardDecision.ALLOW:
            print(f"{args[0]} -> allowed")
        else:
            print(f"{args[0]} -> redirect to {location}")
        return 0

    print(f"Unknown command: {command}")
    print(USAGE)
    return 2


async def run(argv: List[str]) -> int:
    try:
        options, args = parse_args(argv)
    except ValueError as e:
        print(e)
        return 2

    if not args or args[0] in ('help', '-h', '--help'):
        print(USAGE)
        return 0

    config = Config.from_env()
    if options['base_url']:
        config = Config(api_base_url=options['base_url'], request_timeout=config.REQUEST_TIMEOUT,
                        envelope=config.ENVELOPE, storage_path=config.STORAGE_PATH, log_level=config.LOG_LEVEL)
    configure_logging('DEBUG' if options['debug'] else config.LOG_LEVEL)
    if options['debug']:
        config.log_config()

    async with AdminContext(config) as ctx:
        try:
            return await run_command(ctx, args[0], args[1:])
        except ApiError as e:
            logger.debug(f"Command failed: {e!r}")
            print(f"Error: {e.message}")
            return 1


def main():
    sys.exit(asyncio.run(run(sys.argv[1:])))


if __name__ == '__main__':
    main()
