"""Import a browser localStorage dump into the versioned state store.

The admin/manager pages kept workflow state under ad hoc keys. Export them
from the browser console with ``copy(JSON.stringify(localStorage))`` and pass
the saved file to this script.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from aura_runner.core.database import AsyncSessionLocal, engine, init_db  # noqa: E402
from aura_runner.storage.repository import (  # noqa: E402
    CONTENT_HISTORY_NAMESPACE,
    DRAFTS_NAMESPACE,
    UPLOADS_NAMESPACE,
    StateRepository,
)

# localStorage key -> (namespace, key)
LEGACY_KEYS = {
    "uploadedFiles": (UPLOADS_NAMESPACE, "files"),
    "contentType": (UPLOADS_NAMESPACE, "content_type"),
    "managerContentHistory": (CONTENT_HISTORY_NAMESPACE, "entries"),
}


def _decode(raw: str):
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


async def import_dump(path: Path, include_drafts: bool) -> int:
    data = json.loads(path.read_text(encoding="utf-8"))
    await init_db(engine)
    imported = 0
    for legacy_key, raw in data.items():
        target = LEGACY_KEYS.get(legacy_key)
        if target is None and include_drafts and "draft" in legacy_key.lower():
            target = (DRAFTS_NAMESPACE, legacy_key)
        if target is None:
            continue
        namespace, key = target
        repo = StateRepository(AsyncSessionLocal, namespace)
        record = await repo.put(key, _decode(raw))
        print(f"{legacy_key} -> {namespace}/{key} (revision {record.revision})")
        imported += 1
    return imported


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("dump", type=Path, help="JSON file holding the localStorage export")
    parser.add_argument("--drafts", action="store_true", help="also import keys containing 'draft'")
    args = parser.parse_args()
    if not args.dump.exists():
        print(f"File not found: {args.dump}")
        return 1
    count = asyncio.run(import_dump(args.dump, args.drafts))
    print(f"Imported {count} key(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
