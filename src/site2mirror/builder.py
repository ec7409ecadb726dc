"""レガシーサイトのミラー成果物を段階的に組み立てる中核オーケストレーター。"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .artifacts import read_csv
from .assets import collect_asset_candidates, load_asset_candidates, write_asset_candidates
from .blobs import BlobStore, BlobSync, create_blob_store, write_blob_results
from .capture import capture_routes, write_snapshots
from .config import MirrorConfig
from .document import AssetResolver, ContentBuildResult, DocumentStoreWriter, load_snapshots
from .env import current_blob_settings
from .http_client import HttpClient
from .models import SearchRecord
from .routes import build_route_contract, load_discovery_inputs, load_route_contract, write_route_contract
from .search import build_search_index, load_documents, write_search_index
from .verify import ContractReport, verify_layout, write_contract_report

STAGES = (
    "discover",
    "snapshot",
    "extract-assets",
    "build-content",
    "build-search-index",
    "verify",
    "sync-blobs",
)


@dataclass(slots=True)
class PipelineResult:
    stages: dict[str, dict[str, Any]] = field(default_factory=dict)
    report: ContractReport | None = None

    @property
    def ok(self) -> bool:
        return self.report is None or self.report.ok


class MirrorPipeline:
    """各ステージを順に実行し、ステージごとのイベントを JSON Lines で記録します。

    ステージは成果物ディレクトリを介してのみ受け渡しを行うため、個別に再実行できます。
    """

    def __init__(
        self,
        config: MirrorConfig,
        *,
        blob_store: BlobStore | None = None,
        http_client: HttpClient | None = None,
    ) -> None:
        self.config = config
        self._blob_store = blob_store
        self._http_client = http_client
        self._logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)
        self._summary_base = {
            "data_dir": str(config.layout.root),
            "created_at": config.created_at.isoformat(),
        }
        self._summary_path = config.layout.logs_dir / "pipeline_summary.json"

    # Stages ---------------------------------------------------------------

    def discover(self) -> dict[str, Any]:
        self.config.layout.ensure()
        inputs = load_discovery_inputs(self.config.discovery)
        contract = build_route_contract(inputs, self.config.site)
        counts = write_route_contract(contract, self.config.layout, self.config.created_at)
        self._logger.info(
            "ルート契約を作成しました (canonical=%d, reachable_extra=%d, aliases=%d)",
            counts["canonicalCount"],
            counts["reachableExtraCount"],
            counts["aliasCount"],
        )
        self._update_summary("discover", **counts)
        return counts

    def snapshot(self) -> dict[str, Any]:
        return asyncio.run(self.capture())

    async def capture(self) -> dict[str, Any]:
        self.config.layout.ensure()
        routes = load_route_contract(self.config.layout).html_routes
        result = await capture_routes(routes, self.config.capture, self.config.site, progress=self._report_capture_progress)
        summary = write_snapshots(result, self.config.layout)
        reasons = sorted({failure.reason for failure in result.failed})
        if summary.error_count:
            self._logger.warning(
                "スナップショットを取得できなかったルートが %d 件あります (理由: %s)",
                summary.error_count,
                ", ".join(reasons[:5]) or "不明",
            )
        payload = {
            "requestedCount": summary.requested_count,
            "okCount": summary.ok_count,
            "errorCount": summary.error_count,
            "failureReasons": reasons,
        }
        self._update_summary("snapshot", **payload)
        return payload

    def extract_assets(self) -> dict[str, Any]:
        self.config.layout.ensure()
        snapshots = load_snapshots(self.config.layout.snapshot_dir)
        contract = load_route_contract(self.config.layout)
        collection = collect_asset_candidates(
            read_csv(self.config.blob.inventory_csv),
            snapshots.succeeded,
            contract.file_routes,
            self.config.site,
        )
        counts = write_asset_candidates(collection, self.config.layout)
        self._logger.info("アセット候補を %d 件収集しました。", counts["combinedCount"])
        self._update_summary("extract-assets", **counts)
        return counts

    def build_content(self) -> ContentBuildResult:
        layout = self.config.layout
        layout.ensure()
        snapshots = load_snapshots(layout.snapshot_dir)
        if snapshots.failed:
            self._logger.warning("読み込めなかったスナップショットが %d 件あります。", snapshots.failure_count)
        resolver = AssetResolver.from_blob_map(layout.assets_dir / "blob-map.json", self.config.site)
        writer = DocumentStoreWriter(layout, self.config.site, self.config.content)
        result = writer.build(snapshots.succeeded, resolver)
        writer.write(result)
        self._update_summary(
            "build-content",
            documents=len(result.documents),
            indexed_paths=len(result.index),
            rejected=result.rejected.failure_count,
            invalid_snapshots=snapshots.failure_count,
            by_type=result.counts_by_type(),
            last_document=result.documents[-1].path if result.documents else None,
        )
        return result

    def build_search_index(self) -> list[SearchRecord]:
        self.config.layout.ensure()
        documents = load_documents(self.config.layout)
        records = build_search_index(documents, self.config.search)
        write_search_index(records, self.config.layout)
        self._logger.info("検索レコードを %d 件作成しました。", len(records))
        self._update_summary("build-search-index", documents=len(documents), records=len(records))
        return records

    def verify(self) -> ContractReport:
        self.config.layout.ensure()
        report = verify_layout(self.config.layout, self.config.verify)
        write_contract_report(report, self.config.layout)
        for finding in report.warnings:
            self._logger.warning("契約検査の警告: %s", finding.message)
        for finding in report.errors:
            self._logger.error("契約検査のエラー: %s", finding.message)
        self._update_summary(
            "verify",
            ok=report.ok,
            errors=len(report.errors),
            warnings=len(report.warnings),
            counts=report.counts,
        )
        return report

    def sync_blobs(self) -> dict[str, Any]:
        self.config.layout.ensure()
        blob_config = self.config.blob
        store = self._blob_store or create_blob_store(current_blob_settings(), dry_run=blob_config.dry_run)
        owned_client = None
        if self._http_client is None:
            owned_client = HttpClient(timeout_s=blob_config.fetch_timeout, max_retries=blob_config.fetch_retries)
        sync = BlobSync(store, site=self.config.site, http_client=self._http_client or owned_client)
        try:
            result = sync.sync(load_asset_candidates(self.config.layout), limit=blob_config.limit)
        finally:
            if owned_client is not None:
                owned_client.close()
        summary = write_blob_results(result, self.config.layout, dry_run=blob_config.dry_run)
        if result.records.failed:
            self._logger.warning("同期に失敗したアセットが %d 件あります。", result.records.failure_count)
        last_error = result.records.failed[-1].reason if result.records.failed else None
        self._update_summary("sync-blobs", last_error=last_error, **summary)
        return summary

    def run_all(self, *, include_snapshot: bool = True, include_blobs: bool = True) -> PipelineResult:
        """全ステージを依存順に実行します。"""

        self._prepare_logging_resources()
        result = PipelineResult()
        result.stages["discover"] = self.discover()
        if include_snapshot:
            result.stages["snapshot"] = self.snapshot()
        result.stages["extract-assets"] = self.extract_assets()
        content = self.build_content()
        result.stages["build-content"] = {"documents": len(content.documents), "byType": content.counts_by_type()}
        result.stages["build-search-index"] = {"records": len(self.build_search_index())}
        result.report = self.verify()
        result.stages["verify"] = {"ok": result.report.ok, "errors": len(result.report.errors)}
        if include_blobs:
            result.stages["sync-blobs"] = self.sync_blobs()
        self._update_summary("completed", stages=list(result.stages), ok=result.ok)
        return result

    # Internal helpers -----------------------------------------------------

    def _prepare_logging_resources(self) -> None:
        self.config.layout.ensure()
        self._summary_path.write_text("", encoding="utf-8")

    def _report_capture_progress(self, current: int, total: int, path: str) -> None:
        self._logger.info("スナップショット取得中 (%d/%d): %s", current, total, path)
        self._update_summary("snapshotting", total=total, captured=current, last_path=path)

    def _update_summary(self, stage: str, **extra: Any) -> None:
        payload = dict(self._summary_base)
        payload.update(extra)
        payload["stage"] = stage
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)
        with self._summary_path.open("a", encoding="utf-8") as stream:
            stream.write(json.dumps(payload, ensure_ascii=False))
            stream.write("\n")


def run_pipeline(config: MirrorConfig, **kwargs: Any) -> PipelineResult:
    pipeline = MirrorPipeline(config)
    return pipeline.run_all(**kwargs)
