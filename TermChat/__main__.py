"""
Entry point for TermChat.
This module provides a command-line interface to start the server and to
manage rooms and tokens.
"""

import argparse
import sys

from TermChat.config import config
from TermChat.core.logging import auto_configure
from TermChat.start import admin, api, server


def parse(argv=None):
    parser = argparse.ArgumentParser(prog='TermChat', description='TermChat starter')
    parser.add_argument('--db', default=None, help=f'SQLite database file (default: {config.SQLITE_DB_FILE})')
    parser.add_argument('--env', default=None, help=f'Logging preset (default: {config.LOG_ENV})')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    server_parser = subparsers.add_parser('server', help='Startup WebSocket server and HTTP API')
    server_parser.add_argument('--host', default=config.DEFAULT_HOST, help='listening address')
    server_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                               help=f'server port; the api uses port + 1 (default: {config.DEFAULT_SERVER_PORT})')

    srv_parser = subparsers.add_parser('srv-only', help='Startup server (ws server)')
    srv_parser.add_argument('--host', default=config.DEFAULT_HOST, help='listening address')
    srv_parser.add_argument('--port', type=int, default=config.DEFAULT_SERVER_PORT,
                            help=f'server port (default: {config.DEFAULT_SERVER_PORT})')

    api_parser = subparsers.add_parser('api-only', help='Startup HTTP api')
    api_parser.add_argument('--host', default=config.DEFAULT_HOST, help='listening address')
    api_parser.add_argument('--port', type=int, default=config.DEFAULT_API_PORT,
                            help=f'api server port (default: {config.DEFAULT_API_PORT})')

    room_parser = subparsers.add_parser('create-room', help='Create a room or extend its access lists')
    room_parser.add_argument('name', help='Room name')
    room_parser.add_argument('--allow', nargs='*', default=[], metavar='USER', help='Users allowed to join')
    room_parser.add_argument('--ban', nargs='*', default=[], metavar='USER', help='Users banned from the room')

    token_parser = subparsers.add_parser('issue-token', help='Print a login token for a user')
    token_parser.add_argument('username', help='User to issue the token for')

    return parser.parse_args(argv)


def main(argv=None):
    args = parse(argv)
    auto_configure(args.env or config.LOG_ENV)

    if args.command == 'server':
        server.server(host=args.host, port=args.port, db_path=args.db)
    elif args.command == 'srv-only':
        server.server(host=args.host, port=args.port, srv_only=True, db_path=args.db)
    elif args.command == 'api-only':
        api.api(host=args.host, port=args.port, db_path=args.db)
    elif args.command == 'create-room':
        try:
            print(admin.create_room(args.name, args.allow, args.ban, db_path=args.db))
        except ValueError as e:
            sys.exit(f"error: {e}")
    elif args.command == 'issue-token':
        try:
            print(admin.issue_token(args.username, db_path=args.db))
        except ValueError as e:
            sys.exit(f"error: {e}")
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
