from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

# Markdown append log of mode switches; losing it is harmless


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


async def append_mode_switch_row(
    path: Path,
    *,
    tg_user_id: int,
    previous_mode: str,
    new_mode: str,
    ts: float,
) -> None:
    """
    Append a row to the journal under a 'mode_switches' section. If the file or
    section is missing, create it.
    """

    def _sync_append() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text("# Mode journal\n\n", encoding="utf-8")
        text = path.read_text(encoding="utf-8")
        if "## mode_switches" not in text:
            header = (
                "\n## mode_switches\n\n"
                "| ts | tg_user_id | previous_mode | new_mode |\n"
                "| -- | ---------- | ------------- | -------- |\n"
            )
            with path.open("a", encoding="utf-8") as f:
                f.write(header)
        row = f"| {_iso(ts)} | {tg_user_id} | {previous_mode} | {new_mode} |\n"
        with path.open("a", encoding="utf-8") as f:
            f.write(row)

    await asyncio.to_thread(_sync_append)
