"""instadeck command line: serve the bridge and manage its configuration."""

import argparse
import json
import os
import sys
import uuid
from pathlib import Path

from .config import ConfigError, get_readeck_url, load_device_users


def _check_config() -> int:
    try:
        url = get_readeck_url()
        users = load_device_users()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    print(f"Readeck URL: {url}")
    if users:
        print("Device users: " + ", ".join(sorted(user.name for user in users.values())))
    else:
        print("Device users: none configured; every device request will be rejected")
    return 0


def _serve(host: str, port: int) -> int:
    if _check_config():
        return 1
    import uvicorn

    uvicorn.run("instadeck.main:app", host=host, port=port, log_config=None)
    return 0


def _generate_token() -> int:
    print(uuid.uuid4())
    return 0


def _export_openapi(output: Path) -> int:
    from .main import create_app

    schema = create_app().openapi()
    with output.open("w", encoding="utf-8") as fp:
        json.dump(schema, fp, indent=2)
    print(f"Wrote {output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="instadeck", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))

    commands.add_parser("check-config", help="Validate READECK_URL and the device users")
    commands.add_parser("generate-token", help="Print a new random device token")

    export = commands.add_parser("export-openapi", help="Write the OpenAPI schema as JSON")
    export.add_argument("--output", type=Path, default=Path("openapi.json"))
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])
    if args.command == "serve":
        return _serve(args.host, args.port)
    if args.command == "check-config":
        return _check_config()
    if args.command == "generate-token":
        return _generate_token()
    return _export_openapi(args.output)


if __name__ == "__main__":
    raise SystemExit(main())
