import argparse
import uvicorn

from shared.config import config

SERVICES = {
    "backend": "app:app",
    "auto-analyze": "services.auto_analyze.app:app",
}


def main():
    parser = argparse.ArgumentParser(description="Bootloader for the session insights FastAPI services.")
    parser.add_argument("service", nargs="?", default="backend", choices=SERVICES.keys(), help="Service to start")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (defaults to DEBUG)")
    parser.add_argument("--log-level", default=config.get("log_level", "INFO"), help="Uvicorn log level")
    args = parser.parse_args()

    app_path = SERVICES[args.service]
    reload = args.reload or config.get("debug", False)
    print(f"[BOOTLOADER] Starting {args.service} ({app_path}) on {args.host}:{args.port} ...")
    uvicorn.run(app_path, host=args.host, port=args.port, reload=reload, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
