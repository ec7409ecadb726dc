"""分類済みドキュメントから軽量な検索インデックスを作るユーティリティ。"""

from __future__ import annotations

import re
from typing import Iterable

from .artifacts import read_json_list, write_json
from .config import MirrorLayout, SearchConfig, default_timestamp
from .models import PageDocument, SearchRecord

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
ELLIPSIS = "…"


def tokenize(value: str, *, max_terms: int = 300, min_length: int = 2) -> list[str]:
    """小文字化・英数字以外の除去・重複排除をした語のリストを返します。"""

    tokens = _NON_ALNUM.sub(" ", value.lower()).split()
    unique = dict.fromkeys(token for token in tokens if len(token) >= min_length)
    return list(unique)[:max_terms]


def build_excerpt(text: str, *, length: int = 280, lookback: int = 130) -> str:
    """先頭 ``length`` 文字の抜粋を作ります。

    近くに文末 (``". "``) があればそこで切り、なければ省略記号を付けて切り詰めます。
    """

    flattened = _WHITESPACE.sub(" ", text or "").strip()
    if len(flattened) <= length:
        return flattened
    head = flattened[:length]
    # 文末の空白が切り詰め位置の直後にある場合も境界として扱う
    boundary = flattened.rfind(". ", 0, length + 1)
    if boundary >= 0 and boundary >= length - lookback:
        return head[: boundary + 1]
    return head.rstrip() + ELLIPSIS


def build_search_index(documents: Iterable[PageDocument], config: SearchConfig | None = None) -> list[SearchRecord]:
    """検索対象の種別だけを残し、文書ごとに 1 レコードを作ります。"""

    search_config = config or SearchConfig()
    searchable = set(search_config.searchable_types)
    records: list[SearchRecord] = []
    for document in documents:
        if document.type not in searchable:
            continue
        excerpt = build_excerpt(
            document.text, length=search_config.excerpt_length, lookback=search_config.sentence_lookback
        )
        terms = tokenize(
            f"{document.title} {document.description} {excerpt}",
            max_terms=search_config.max_terms,
            min_length=search_config.min_term_length,
        )
        records.append(
            SearchRecord(
                path=document.path,
                type=document.type,
                title=document.title,
                description=document.description,
                excerpt=excerpt,
                terms=terms,
            )
        )
    return records


def load_documents(layout: MirrorLayout) -> list[PageDocument]:
    return [
        PageDocument.from_dict(row)
        for row in read_json_list(layout.content_dir / "all-documents.json")
        if isinstance(row, dict)
    ]


def write_search_index(records: list[SearchRecord], layout: MirrorLayout) -> None:
    write_json(layout.search_dir / "index.json", [record.to_dict() for record in records])
    write_json(
        layout.search_dir / "summary.json",
        {"generatedAt": default_timestamp().isoformat(), "recordCount": len(records)},
    )
