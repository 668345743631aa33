import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def main() -> None:
    """Run the SPS user API under uvicorn."""
    port = int(os.getenv("PORT", "3000"))
    host = os.getenv("HOST", "127.0.0.1")
    environment = os.getenv("ENVIRONMENT", "development").lower()
    # Users live in process memory: one worker unless Redis backs the shared state
    workers = int(os.getenv("WORKERS", "1")) if environment == "production" else 1

    print(f"SPS API ({environment}) on http://{host}:{port}/api")
    uvicorn.run(
        "sps_web.main:create_app",
        factory=True,
        host=host,
        port=port,
        workers=workers,
        reload=environment == "development",
        log_level="info" if environment == "production" else "debug",
    )


if __name__ == "__main__":
    main()
