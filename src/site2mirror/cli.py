"""site2mirror のコマンドラインインターフェース。"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from .builder import STAGES, MirrorPipeline
from .capture import load_only_paths
from .config import DiscoveryConfig, MirrorConfig
from .env import load_env_file

EXIT_CONTRACT_FAILED = 1
EXIT_USAGE = 2


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="レガシーサイトのミラー成果物を生成・検証します")
    parser.add_argument("stage", choices=(*STAGES, "all"), help="実行するステージ (all は全ステージを順に実行)")
    parser.add_argument("--data-dir", dest="data_dir", type=Path, default=Path("mirror-data"), help="成果物を書き出すディレクトリ")
    parser.add_argument("--verbose", dest="verbose", action="store_true", help="進捗ログを標準出力へ表示")
    parser.add_argument("--env-file", dest="env_file", type=Path, default=None, help="読み込む .env ファイル")
    parser.add_argument(
        "--extra-host",
        dest="extra_hosts",
        action="append",
        default=[],
        help="ミラー元として扱う追加ホスト名 (複数指定可)",
    )

    discovery_group = parser.add_argument_group("ルート発見の入力")
    discovery_group.add_argument("--sitemap", dest="sitemap", type=Path, default=None, help="サイトマップ URL を 1 行 1 件で記したファイル")
    discovery_group.add_argument("--reachable", dest="reachable", type=Path, default=None, help="クロールで到達した URL の一覧ファイル")
    discovery_group.add_argument("--non-ok", dest="non_ok", type=Path, default=None, help="200 以外を返した URL の一覧ファイル")
    discovery_group.add_argument("--status-csv", dest="status_csv", type=Path, default=None, help="url,status 列を持つ CSV")

    capture_group = parser.add_argument_group("スナップショット取得")
    capture_group.add_argument("--only", dest="only", action="append", default=[], help="取得対象に限定するパス (複数指定可)")
    capture_group.add_argument("--only-file", dest="only_file", type=Path, default=None, help="取得対象パスを 1 行 1 件で記したファイル")
    capture_group.add_argument("--limit", dest="limit", type=int, default=None, help="取得・同期する件数の上限")
    capture_group.add_argument(
        "--launch-options",
        dest="launch_options",
        type=str,
        default=None,
        help="Playwright ブラウザの起動オプションを JSON で指定",
    )
    capture_group.add_argument("--skip-snapshot", dest="skip_snapshot", action="store_true", help="all 実行時にスナップショット取得を省略")

    blob_group = parser.add_argument_group("アセット同期")
    blob_group.add_argument("--inventory-csv", dest="inventory_csv", type=Path, default=None, help="アーカイブ在庫 CSV")
    blob_group.add_argument("--dry-run", dest="dry_run", action="store_true", help="アップロードせずに対応表だけを作成")
    blob_group.add_argument("--fetch-timeout", dest="fetch_timeout", type=float, default=None, help="リモート取得のタイムアウト秒数")
    blob_group.add_argument("--skip-blobs", dest="skip_blobs", action="store_true", help="all 実行時にブロブ同期を省略")

    verify_group = parser.add_argument_group("契約検査")
    verify_group.add_argument(
        "--expected-canonical-count",
        dest="expected_canonical_count",
        type=int,
        default=None,
        help="サイトマップ由来の正規ルート数の基準値",
    )
    verify_group.add_argument(
        "--min-reachable-extra",
        dest="min_reachable_extra",
        type=int,
        default=None,
        help="追加到達ルート数がこれを下回ると警告",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    _validate_args(args)
    try:
        launch_options = _parse_launch_options(args.launch_options)
    except ValueError as exc:
        print(f"[エラー] --launch-options: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)
    _configure_logging(args.verbose)
    load_env_file(args.env_file)

    config = MirrorConfig.from_args(
        args.data_dir,
        discovery=DiscoveryConfig(
            sitemap_file=args.sitemap,
            reachable_file=args.reachable,
            non_ok_file=args.non_ok,
            status_csv_file=args.status_csv,
        ),
        only_paths=load_only_paths(args.only, args.only_file),
        snapshot_limit=args.limit,
        launch_options=launch_options,
        extra_hosts=args.extra_hosts,
        blob_overrides=_collect_blob_overrides(args),
        verify_overrides=_collect_verify_overrides(args),
    )
    pipeline = MirrorPipeline(config)
    summary, ok = _run_stage(pipeline, args)
    print(json.dumps({"stage": args.stage, "output": str(config.layout.root), **summary}, ensure_ascii=False))
    if not ok:
        raise SystemExit(EXIT_CONTRACT_FAILED)


def _run_stage(pipeline: MirrorPipeline, args: argparse.Namespace) -> tuple[dict[str, Any], bool]:
    stage = args.stage
    if stage == "all":
        result = pipeline.run_all(include_snapshot=not args.skip_snapshot, include_blobs=not args.skip_blobs)
        return {"stages": result.stages}, result.ok
    if stage == "discover":
        return pipeline.discover(), True
    if stage == "snapshot":
        return pipeline.snapshot(), True
    if stage == "extract-assets":
        return pipeline.extract_assets(), True
    if stage == "build-content":
        content = pipeline.build_content()
        return {"documents": len(content.documents), "byType": content.counts_by_type()}, True
    if stage == "build-search-index":
        return {"records": len(pipeline.build_search_index())}, True
    if stage == "verify":
        report = pipeline.verify()
        return report.to_dict(), report.ok
    return pipeline.sync_blobs(), True


def _validate_args(args: argparse.Namespace) -> None:
    errors: list[str] = []
    if args.data_dir.exists() and not args.data_dir.is_dir():
        errors.append(f"[エラー] 出力パスがディレクトリではありません: {args.data_dir}")

    for option, path in (
        ("--sitemap", args.sitemap),
        ("--reachable", args.reachable),
        ("--non-ok", args.non_ok),
        ("--status-csv", args.status_csv),
        ("--only-file", args.only_file),
        ("--inventory-csv", args.inventory_csv),
        ("--env-file", args.env_file),
    ):
        if path is not None and not path.is_file():
            errors.append(f"[エラー] {option} のファイルが見つかりません: {path}")

    if args.stage in {"discover", "all"} and args.sitemap is None:
        errors.append("[エラー] discover には --sitemap を指定してください。")
    if args.limit is not None and args.limit < 0:
        errors.append("[エラー] --limit には 0 以上の整数を指定してください。")
    if args.fetch_timeout is not None and args.fetch_timeout <= 0:
        errors.append("[エラー] --fetch-timeout には 0 より大きい数値を指定してください。")
    if args.expected_canonical_count is not None and args.expected_canonical_count < 0:
        errors.append("[エラー] --expected-canonical-count には 0 以上の整数を指定してください。")
    if args.min_reachable_extra is not None and args.min_reachable_extra < 0:
        errors.append("[エラー] --min-reachable-extra には 0 以上の整数を指定してください。")

    if errors:
        for message in errors:
            print(message, file=sys.stderr)
        print("入力ファイルと出力ディレクトリを確認してください。", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)

    args.data_dir = args.data_dir.resolve()


def _collect_blob_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.inventory_csv is not None:
        overrides["inventory_csv"] = args.inventory_csv
    if args.dry_run:
        overrides["dry_run"] = True
    if args.fetch_timeout is not None:
        overrides["fetch_timeout"] = args.fetch_timeout
    if args.limit is not None:
        overrides["limit"] = args.limit
    return overrides


def _collect_verify_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.expected_canonical_count is not None:
        overrides["expected_canonical_count"] = args.expected_canonical_count
    if args.min_reachable_extra is not None:
        overrides["min_reachable_extra"] = args.min_reachable_extra
    return overrides


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def _parse_launch_options(raw: str | None) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"JSON の解析に失敗しました ({exc.msg})") from exc
    if not isinstance(parsed, dict):
        raise ValueError("JSON オブジェクトを指定してください。")
    return parsed


if __name__ == "__main__":
    main()
