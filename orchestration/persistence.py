import csv
import logging
from pathlib import Path
from typing import Iterable, List, Union

from strategy.execution_types import Position


logger = logging.getLogger(__name__)

CSV_HEADER = [
    "market",
    "status",
    "side",
    "size",
    "maxSize",
    "entryPrice",
    "exitPrice",
    "createdAt",
    "createdAtHeight",
    "closedAt",
    "sumOpen",
    "sumClose",
    "netFunding",
    "subaccountNumber",
]


def _cell(value) -> str:
    return "" if value is None else str(value)


def position_row(position: Position) -> List[str]:
    return [
        position.market,
        position.status,
        position.side,
        _cell(position.size),
        _cell(position.max_size),
        _cell(position.entry_price),
        _cell(position.exit_price),
        _cell(position.created_at),
        _cell(position.created_at_height),
        _cell(position.closed_at),
        _cell(position.sum_open),
        _cell(position.sum_close),
        _cell(position.net_funding),
        _cell(position.subaccount_number),
    ]


class PositionExporter:
    """Write one CSV per exchange with its current open positions, replacing the previous file."""

    def __init__(self, export_dir: Union[str, Path] = "data/custom/exports"):
        self.export_dir = Path(export_dir)

    def path_for(self, label: str) -> Path:
        return self.export_dir / f"positions{label}.csv"

    def write_snapshot(self, label: str, positions: Iterable[Position]) -> Path:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(label)
        tmp_path = path.with_suffix(".csv.tmp")
        rows = 0
        try:
            with tmp_path.open("w", newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                writer.writerow(CSV_HEADER)
                for position in positions:
                    writer.writerow(position_row(position))
                    rows += 1
            tmp_path.replace(path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Exported %s positions to %s", rows, path)
        return path
