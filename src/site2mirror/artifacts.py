"""成果物ファイルの読み書きユーティリティ。"""

from __future__ import annotations

import csv
import hashlib
import io
import json
import logging
from pathlib import Path
from typing import Any, TypeVar

from charset_normalizer import from_bytes as detect_charset

logger = logging.getLogger(__name__)

T = TypeVar("T")


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def read_json(path: Path, fallback: T) -> Any | T:
    """JSON を読み込みます。存在しない・壊れている場合は fallback を返します。"""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return fallback
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("JSON の読み込みに失敗したため既定値を使用します: %s (%s)", path, exc)
        return fallback


def read_json_list(path: Path) -> list[Any]:
    payload = read_json(path, [])
    if not isinstance(payload, list):
        logger.warning("JSON 配列を想定していましたが別の型でした: %s", path)
        return []
    return payload


def read_text(path: Path) -> str:
    """文字コードを判定してテキストファイルを読み込みます。"""

    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return ""
    except OSError:
        logger.error("ファイルの読み込みに失敗しました: %s", path, exc_info=True)
        return ""
    if not data:
        return ""
    encoding = "utf-8"
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        result = detect_charset(data).best()
        if result is not None and result.encoding:
            encoding = result.encoding
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        logger.debug("未知のエンコーディング %s のため UTF-8 フォールバックを使用します。", encoding)
    return data.decode("utf-8", errors="replace")


def read_lines(path: Path | None) -> list[str]:
    if path is None:
        return []
    return [line.strip() for line in read_text(path).splitlines() if line.strip()]


def read_csv(path: Path | None) -> list[dict[str, str]]:
    """ヘッダー付き CSV を辞書のリストとして読み込みます。"""

    if path is None:
        return []
    text = read_text(path).lstrip("﻿")
    if not text.strip():
        return []
    reader = csv.DictReader(io.StringIO(text))
    rows: list[dict[str, str]] = []
    for row in reader:
        rows.append({(key or "").strip(): (value or "") for key, value in row.items() if key is not None})
    return rows


def sha1_hex(data: str | bytes) -> str:
    payload = data.encode("utf-8") if isinstance(data, str) else data
    return hashlib.sha1(payload).hexdigest()
