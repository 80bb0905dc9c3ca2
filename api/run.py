# api/run.py
# Launcher for the relay.
# - Imports api.main:app first so config errors show up as a readable traceback
# - Then starts Uvicorn on HOST/PORT (default 0.0.0.0:3000)

import os
import sys
import traceback


def main():
    print("============================================================")
    print("Starting GHL Webhook Relay (api.run)")
    print("CWD       :", os.getcwd())
    print("============================================================", flush=True)

    try:
        # Import here so import-time errors (bad destination table, ...) are caught
        from api.main import app  # noqa: F401
    except Exception:
        print("api.run: FAILED to load api.main:app", flush=True)
        traceback.print_exc()
        sys.exit(1)

    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    print(f"Uvicorn serving on http://{host}:{port}", flush=True)
    uvicorn.run("api.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
