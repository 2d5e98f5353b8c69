"""Writing join rows and summaries to disk."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger


def rows_to_frame(rows: Sequence[Dict[str, Any]], columns: Optional[List[str]] = None) -> pd.DataFrame:
    """Build a DataFrame keeping the column order of the consolidated field specs."""
    frame = pd.DataFrame(list(rows))
    if columns:
        for col in columns:
            if col not in frame.columns:
                frame[col] = None
        extra = [c for c in frame.columns if c not in columns]
        frame = frame[list(columns) + extra]
    return frame


def save_rows(path: str, rows: Sequence[Dict[str, Any]], columns: Optional[List[str]] = None) -> Path:
    """Save rows as CSV or JSON depending on the file suffix."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    frame = rows_to_frame(rows, columns)
    suffix = p.suffix.lower()
    if suffix == '.csv':
        frame.to_csv(p, index=False)
    elif suffix in ('.json', '.jsonl'):
        frame.to_json(p, orient='records', lines=suffix == '.jsonl', indent=None if suffix == '.jsonl' else 2)
    else:
        raise ValueError(f"Unsupported output format '{p.suffix}', use .csv, .json or .jsonl")
    logger.info(f"Saved {len(frame)} rows to: {p}")
    return p


def save_summary(path: str, summary: dict) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w', encoding='utf-8') as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info(f"Saved join summary to: {p}")
    return p
