"""Sequential document numbers: DN-YYYY-MM-NNN and VH-YYYY-NNN."""

from datetime import date

from jobflow.store import EntityStore


def _next_in_sequence(last: str | None, prefix: str) -> int:
    if not last or not last.startswith(prefix):
        return 1
    try:
        return int(last[len(prefix):]) + 1
    except ValueError:
        return 1


async def next_delivery_note_id(store: EntityStore, prefix: str, on: date) -> str:
    month_prefix = f"{prefix}-{on.year}-{on.month:02d}-"
    last = await store.last_delivery_note_id(month_prefix)
    return f"{month_prefix}{_next_in_sequence(last, month_prefix):03d}"


async def next_voucher_no(store: EntityStore, prefix: str, on: date) -> str:
    year_prefix = f"{prefix}-{on.year}-"
    last = await store.last_voucher_no(year_prefix)
    return f"{year_prefix}{_next_in_sequence(last, year_prefix):03d}"
