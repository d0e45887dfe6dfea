"""
Command-line dispatcher.

Run with:
    python -m relaychat server [--host HOST] [--port PORT]
    python -m relaychat client [--host HOST] [--port PORT]
"""

import sys

from relaychat.client.client import main as client_main
from relaychat.server.server import main as server_main


MODES = {
    "server": server_main,
    "client": client_main,
}


def main(argv=None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in MODES:
        print("usage: python -m relaychat {server|client} [--host HOST] [--port PORT]")
        sys.exit(2)
    MODES[argv[0]](argv[1:])


if __name__ == "__main__":
    main()
