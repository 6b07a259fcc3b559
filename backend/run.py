import uvicorn
import argparse
import os


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Courier API client core")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8333, help="Port to run the backend on")
    parser.add_argument("--dir", type=str, default=None, help="Workspace directory for data")
    parser.add_argument("--proxy", type=str, default=None, help="Proxy endpoint that performs outbound calls")
    parser.add_argument("--backend", type=str, default=None, help="Remote backend for history/collections")

    args = parser.parse_args()

    # Settings are read from the environment when app.main is imported
    if args.dir:
        os.environ["COURIER_WORKSPACE"] = args.dir
    if args.proxy:
        os.environ["COURIER_PROXY_URL"] = args.proxy
    if args.backend:
        os.environ["COURIER_BACKEND_URL"] = args.backend

    from app.main import app

    print(f"Starting Courier on http://{args.host}:{args.port}")
    print(f"Workspace: {os.path.abspath(os.environ.get('COURIER_WORKSPACE', './workspace'))}")

    uvicorn.run(app, host=args.host, port=args.port, reload=False)
