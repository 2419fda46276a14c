"""Run the receiver: `python -m fieldsync.receiver [serve|hash-password]`."""

import argparse
import getpass
import sys

import uvicorn

from fieldsync.config import configure_logging
from fieldsync.receiver.app import create_receiver_app
from fieldsync.receiver.auth import hash_password
from fieldsync.receiver.config import ReceiverSettings


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m fieldsync.receiver", description="FieldSync receiver service")
    subcommands = parser.add_subparsers(dest="command")

    serve = subcommands.add_parser("serve", help="Run the receiver HTTP service (default)")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    hasher = subcommands.add_parser("hash-password", help="Print a password hash for RECEIVER_PASSWORD_HASH")
    hasher.add_argument("password", nargs="?", help="Password to hash; prompted for when omitted")

    args = parser.parse_args(argv)

    if args.command == "hash-password":
        password = args.password or getpass.getpass("Password: ")
        if not password:
            print("Password must not be empty", file=sys.stderr)
            return 1
        print(hash_password(password))
        return 0

    settings = ReceiverSettings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_receiver_app(settings),
        host=getattr(args, "host", None) or settings.host,
        port=getattr(args, "port", None) or settings.port,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
