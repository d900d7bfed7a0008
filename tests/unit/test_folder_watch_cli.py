from pathlib import Path

from scripts.folder_watch import build_settings, main, parse_args


def test_cli_options_override_settings(settings, tmp_path):
    args = parse_args(
        [
            "--account-name", "acct",
            "--account-key", "key",
            "--container-name", "backups",
            "--directory", str(tmp_path),
            "--include",
            "--filter", "*.txt",
            "--log-level", "DEBUG",
        ]
    )

    effective = build_settings(args, base=settings)

    assert effective.storage_account_name == "acct"
    assert effective.container_name == "backups"
    assert effective.watch_directory == Path(tmp_path)
    assert effective.include_subdirectories is True
    assert effective.file_filter == "*.txt"
    assert effective.log_level == "DEBUG"


def test_unset_options_keep_settings(settings):
    effective = build_settings(parse_args([]), base=settings)

    assert effective.container_name == "test-uploads"
    assert effective.include_subdirectories is False
    assert effective.file_filter == "*"


def test_missing_credentials_exit_early(monkeypatch, settings, tmp_path):
    monkeypatch.setattr("scripts.folder_watch.get_settings", lambda: settings)

    assert main(["--directory", str(tmp_path)]) == 2
