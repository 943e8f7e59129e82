"""CLI helper for pushing the locally cached competition data to the GitHub Gist."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List

from golf_core import GolfDataError, GolfDataManager


def _format_summary(manager: GolfDataManager) -> str:
    data = manager.snapshot()
    lines = [
        f"Participants: {len(data.participants)}",
        f"Competitions: {len(data.competitions)}",
        f"Attendance rows: {len(data.attendance)}",
    ]
    if manager.remote.document_url:
        lines.append(f"Gist: {manager.remote.document_url}")
    return "\n".join(lines)


async def _push(manager: GolfDataManager) -> None:
    manager.load_local()
    await manager.sync()


def main(argv: List[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    manager = GolfDataManager()

    try:
        asyncio.run(_push(manager))
    except GolfDataError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(_format_summary(manager))

    if args:
        path = manager.export_to(Path(args[0]))
        print(f"Exported to {path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
