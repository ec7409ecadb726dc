"""書き出し済みの成果物に対してルート契約の不変条件を検査するユーティリティ。"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Literal, Sequence

from .artifacts import read_json_list, write_json
from .config import MirrorLayout, VerifyConfig
from .models import ContentIndexRecord
from .paths import path_variants
from .routes import RouteContract, load_route_contract

logger = logging.getLogger(__name__)

Severity = Literal["error", "warning"]


@dataclass(slots=True)
class ContractFinding:
    """検査で見つかった問題 1 件。"""

    severity: Severity
    kind: str
    message: str
    path: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"severity": self.severity, "kind": self.kind, "message": self.message, "path": self.path}


@dataclass(slots=True)
class ContractReport:
    """契約検査の結果。状態は変更せず、件数と指摘事項だけを保持します。"""

    findings: list[ContractFinding] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> list[ContractFinding]:
        return [finding for finding in self.findings if finding.severity == "error"]

    @property
    def warnings(self) -> list[ContractFinding]:
        return [finding for finding in self.findings if finding.severity == "warning"]

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "counts": dict(self.counts),
            "errors": [finding.to_dict() for finding in self.errors],
            "warnings": [finding.to_dict() for finding in self.warnings],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


def verify_contract(
    contract: RouteContract,
    content_index: Sequence[ContentIndexRecord],
    search_record_count: int,
    config: VerifyConfig | None = None,
) -> ContractReport:
    """ルート契約・コンテンツ索引・検索インデックスの整合性を検査します。"""

    verify_config = config or VerifyConfig()
    report = ContractReport(
        counts={
            "canonical": len(contract.canonical),
            "reachableExtra": len(contract.reachable_extra),
            "statusOverrides": len(contract.status_overrides),
            "aliases": len(contract.aliases),
            "htmlRoutes": len(contract.html_routes),
            "fileRoutes": len(contract.file_routes),
            "contentDocs": len(content_index),
            "searchRecords": search_record_count,
        }
    )
    findings = report.findings
    known_200 = contract.two_hundred_paths()
    content_paths = {record.path for record in content_index}

    expected = verify_config.expected_canonical_count
    if expected is not None and len(contract.canonical) != expected:
        findings.append(
            ContractFinding(
                "error",
                "canonical_count_mismatch",
                f"canonical route count is {len(contract.canonical)} (expected baseline {expected})",
            )
        )
    if len(contract.reachable_extra) < verify_config.min_reachable_extra:
        findings.append(
            ContractFinding(
                "warning",
                "reachable_extra_low",
                f"reachable extra route count is low: {len(contract.reachable_extra)}",
            )
        )

    for record in contract.html_routes:
        if not any(variant in content_paths for variant in path_variants(record.path)):
            findings.append(
                ContractFinding("error", "missing_content", f"missing content document for {record.path}", record.path)
            )

    for override in contract.status_overrides:
        if override.path in known_200 and override.status != 200:
            findings.append(
                ContractFinding(
                    "error",
                    "override_collision",
                    f"path {override.path} exists in 200 set and status override set",
                    override.path,
                )
            )

    for alias in contract.aliases:
        if alias.to_path not in known_200:
            findings.append(
                ContractFinding(
                    "error", "alias_target_missing", f"alias target missing in 200 set: {alias.to_path}", alias.from_path
                )
            )

    if search_record_count == 0:
        findings.append(ContractFinding("error", "search_index_empty", "search index is empty"))

    if not contract.file_routes:
        findings.append(ContractFinding("warning", "file_routes_empty", "file-200 routes are empty"))

    for name, count in report.counts.items():
        logger.info("%s=%d", name, count)
    return report


def verify_layout(layout: MirrorLayout, config: VerifyConfig | None = None) -> ContractReport:
    """成果物ディレクトリから読み込んで検査します。"""

    contract = load_route_contract(layout)
    content_index = [
        ContentIndexRecord.from_dict(row)
        for row in read_json_list(layout.content_dir / "index.json")
        if isinstance(row, dict)
    ]
    search_records = read_json_list(layout.search_dir / "index.json")
    return verify_contract(contract, content_index, len(search_records), config)


def write_contract_report(report: ContractReport, layout: MirrorLayout) -> None:
    write_json(layout.logs_dir / "contract-report.json", report.to_dict())
