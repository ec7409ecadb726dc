from __future__ import annotations

import json
from pathlib import Path

import pytest

from site2mirror import cli

SITE = "https://www.mekorhabracha.org"


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _discovery_args(tmp_path: Path) -> list[str]:
    sitemap = tmp_path / "sitemap.txt"
    sitemap.write_text(f"{SITE}/\n{SITE}/about\n", encoding="utf-8")
    reachable = tmp_path / "reachable.txt"
    reachable.write_text(f"{SITE}/About\n", encoding="utf-8")
    return ["--sitemap", str(sitemap), "--reachable", str(reachable)]


def test_cli_collects_blob_and_verify_overrides(tmp_path: Path) -> None:
    inventory = tmp_path / "inventory.csv"
    args = cli.parse_args(
        [
            "sync-blobs",
            "--inventory-csv",
            str(inventory),
            "--dry-run",
            "--fetch-timeout",
            "12.5",
            "--limit",
            "20",
            "--expected-canonical-count",
            "133",
            "--min-reachable-extra",
            "5",
        ]
    )

    blob = cli._collect_blob_overrides(args)
    verify = cli._collect_verify_overrides(args)

    assert blob == {"inventory_csv": inventory, "dry_run": True, "fetch_timeout": 12.5, "limit": 20}
    assert verify == {"expected_canonical_count": 133, "min_reachable_extra": 5}


def test_cli_overrides_are_empty_by_default() -> None:
    args = cli.parse_args(["verify"])

    assert cli._collect_blob_overrides(args) == {}
    assert cli._collect_verify_overrides(args) == {}
    assert args.data_dir == Path("mirror-data")
    assert args.only == []


def test_cli_rejects_missing_sitemap_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["discover", "--sitemap", str(tmp_path / "missing.txt"), "--data-dir", str(tmp_path / "out")])

    assert excinfo.value.code == cli.EXIT_USAGE
    assert "[エラー] --sitemap" in capsys.readouterr().err


def test_cli_requires_sitemap_for_discover(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["discover", "--data-dir", str(tmp_path / "out")])

    assert excinfo.value.code == cli.EXIT_USAGE
    assert "--sitemap を指定してください" in capsys.readouterr().err


def test_cli_rejects_negative_limit(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["snapshot", "--limit", "-1", "--data-dir", str(tmp_path / "out")])

    assert excinfo.value.code == cli.EXIT_USAGE
    assert "--limit" in capsys.readouterr().err


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
def test_cli_rejects_invalid_launch_options(tmp_path: Path, capsys: pytest.CaptureFixture[str], raw: str) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["snapshot", "--launch-options", raw, "--data-dir", str(tmp_path / "out")])

    assert excinfo.value.code == cli.EXIT_USAGE
    assert "[エラー] --launch-options" in capsys.readouterr().err


def test_parse_launch_options_accepts_objects() -> None:
    assert cli._parse_launch_options('{"headless": false}') == {"headless": False}
    assert cli._parse_launch_options("  ") is None


def test_cli_discover_prints_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    out_dir = tmp_path / "out"

    cli.main(["discover", *_discovery_args(tmp_path), "--data-dir", str(out_dir)])

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["stage"] == "discover"
    assert payload["output"] == str(out_dir.resolve())
    assert payload["canonicalCount"] == 2
    assert payload["reachableExtraCount"] == 1
    assert payload["aliasCount"] == 1
    assert (out_dir / "routes" / "canonical-200.json").exists()


def test_cli_verify_fails_without_content(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    out_dir = tmp_path / "out"
    cli.main(["discover", *_discovery_args(tmp_path), "--data-dir", str(out_dir)])
    capsys.readouterr()

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["verify", "--data-dir", str(out_dir)])

    assert excinfo.value.code == cli.EXIT_CONTRACT_FAILED
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["stage"] == "verify"
    assert payload["ok"] is False
    assert (out_dir / "logs" / "contract-report.json").exists()
