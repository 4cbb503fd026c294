#!/usr/bin/env python3
"""
Sign in with Google example.

Runs the web front-end, validates the provider configuration, or forwards a
custom-scheme redirect URL (as dispatched by the OS) to a running instance.
"""

import argparse
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)
logger = logging.getLogger("signin")


def check_config() -> int:
    """Load the environment and provider bundle and print what sign-in will use."""
    from signin.auth.config import load_auth_config, load_provider_options
    from signin.auth.errors import ConfigurationError
    from signin.auth.google import GoogleSignIn

    cfg = load_auth_config()
    try:
        options = load_provider_options(cfg)
        redirect_uri = GoogleSignIn(cfg, options).redirect_uri
    except ConfigurationError as e:
        logger.critical("%s", e)
        return 1

    print(
        json.dumps(
            {
                "ok": bool(options.client_id),
                "providerConfig": cfg.provider_config_path,
                "projectId": options.project_id,
                "bundleId": options.bundle_id,
                "clientIdPresent": bool(options.client_id),
                "urlScheme": options.url_scheme,
                "redirectUri": redirect_uri,
                "identityToolkitUrl": cfg.identity_toolkit_url,
            },
            indent=2,
        )
    )
    if not options.client_id:
        logger.error("Provider configuration has no CLIENT_ID")
        return 1
    return 0


def forward_url(url: str, server: str, timeout: float = 10.0) -> int:
    """
    Hand a redirect URL to a running instance.

    Register this command as the handler for the reversed-client-ID URL scheme.
    """
    import requests

    endpoint = f"{server.rstrip('/')}/oauth/open-url"
    try:
        r = requests.post(endpoint, json={"url": url}, timeout=timeout)
        r.raise_for_status()
        body = r.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("Could not forward URL to %s: %s", endpoint, e)
        return 1

    if not body.get("handled"):
        logger.warning("Running instance did not recognize the URL")
        return 1
    logger.info("URL forwarded to running instance")
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sign in with Google example app",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the app (reads GoogleService-Info.plist from the working directory)
  python main.py --serve

  # Validate the provider configuration
  SIGNIN_PROVIDER_CONFIG=./GoogleService-Info.plist python main.py --check-config

  # Forward a redirect received on the custom URL scheme
  python main.py --open-url 'com.googleusercontent.apps.123:/oauthredirect?code=...&state=...'
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the web front-end")
    parser.add_argument("--check-config", action="store_true", help="Validate the provider configuration and exit")
    parser.add_argument("--open-url", metavar="URL", help="Forward a redirect URL to a running instance and exit")
    parser.add_argument(
        "--server",
        default="http://127.0.0.1:8080",
        help="Running instance to forward --open-url to (default: http://127.0.0.1:8080)",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8080, help="Listen port (default: 8080)")

    args = parser.parse_args()

    try:
        if args.check_config:
            sys.exit(check_config())

        if args.open_url:
            sys.exit(forward_url(args.open_url, args.server))

        if args.serve:
            from signin.api.server import run

            run(host=args.host, port=args.port)
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
