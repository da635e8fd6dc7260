import asyncio
import sys

from vibe.vibe_cli import main

if __name__ == "__main__":
    try:
        status = asyncio.run(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nExiting.")
        status = 130
    raise SystemExit(status)
