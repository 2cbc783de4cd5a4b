"""
ASGI entry point for the Loan Handshake service

Serves two audiences:
1. The mobile app, on behalf of the recorder, asking for a code to share
2. The app-less verification page, on behalf of the counterparty

Run with:
    python app/main.py --port 8000
or:
    uvicorn app.main:app

Behind a reverse proxy every request arrives from the proxy's address, and
the verify rate limit would then be shared by all counterparties. Either
list the proxy in TRUSTED_PROXIES (e.g. TRUSTED_PROXIES='["10.0.0.2"]') so
the app reads X-Forwarded-For itself, or let uvicorn rewrite the client
address:
    uvicorn app.main:app --proxy-headers --forwarded-allow-ips=10.0.0.2
Passing --forwarded-allow-ips to this script does the latter.
"""

import argparse

import uvicorn

from handshake.api import create_default_app

app = create_default_app()


# ========================= ENTRY POINT =========================

if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--forwarded-allow-ips",
        type=str,
        default=None,
        help="Comma-separated proxy addresses whose X-Forwarded-For uvicorn trusts",
    )
    args = parser.parse_args()

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        proxy_headers=args.forwarded_allow_ips is not None,
        forwarded_allow_ips=args.forwarded_allow_ips,
    )
