import base64
from pathlib import Path

from app.utils.helpers import (
    block_id_for,
    destination_path_for,
    matches_filter,
    md5_base64,
    sequence_from_block_id,
    source_path_for,
)


def test_destination_strips_posix_root():
    assert destination_path_for("/data/incoming/report.csv") == "data/incoming/report.csv"


def test_destination_strips_windows_drive():
    assert destination_path_for("C:\\myfolder\\sub\\report.csv") == "myfolder/sub/report.csv"


def test_destination_mapping_is_reversible(tmp_path):
    source = tmp_path / "nested" / "file.bin"
    destination = destination_path_for(source)

    assert source_path_for(destination, Path(source.anchor)) == source


def test_block_ids_are_zero_padded_base64():
    block_id = block_id_for(12)

    assert base64.b64decode(block_id) == b"BlockId0000012"
    assert len(block_id) == len(block_id_for(9_999_999))
    assert sequence_from_block_id(block_id) == 12


def test_block_ids_sort_in_sequence_order():
    decoded = [base64.b64decode(block_id_for(n)) for n in range(1, 25)]

    assert decoded == sorted(decoded)


def test_md5_base64_matches_known_digest():
    assert md5_base64(b"") == "1B2M2Y8AsgTpgAmY7PhCfg=="


def test_matches_filter():
    assert matches_filter("/data/a.txt", "*.txt")
    assert not matches_filter("/data/a.csv", "*.txt")
    assert matches_filter("/data/README", "*.*")
    assert matches_filter("/data/README", "*")
