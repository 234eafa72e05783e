"""World Tavern server launcher."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="World Tavern server")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Recreate the demo world before starting")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server when source files change")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Make the app module (imported by uvicorn) see the same data dir
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    if args.demo:
        from backend.demo import create_demo_data
        from world_tavern.storage import Storage

        data_dir = Path(os.getenv("DATA_DIR", str(ROOT / "data")))
        world = create_demo_data(Storage(data_dir))
        print(f"Created demo world '{world.name}' in {data_dir}")

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    uvicorn.run("backend.app:app", host=HOST, port=BACKEND_PORT, reload=args.reload)


if __name__ == "__main__":
    main()
