"""Create the workflow state tables (non-interactive)."""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from aura_runner.core.database import engine, init_db  # noqa: E402


if __name__ == "__main__":
    asyncio.run(init_db(engine))
    print(f"State tables ready on {engine.url}")
