import pytest

from dn_common import (
    AssetError,
    BoundsViolation,
    TruncatedInput,
    UnsupportedVariant,
    le_s8,
    le_u16,
    le_u24,
    le_u32,
    load_config,
    load_records,
    read_cstring,
    to_int,
)


def test_little_endian_readers():
    data = bytes([0x34, 0x12, 0x56, 0xFF])
    assert le_u16(data, 0) == 0x1234
    assert le_u24(data, 0) == 0x561234
    assert le_u32(data, 0) == 0xFF561234
    assert le_s8(data, 3) == -1


def test_readers_reject_out_of_range():
    with pytest.raises(BoundsViolation):
        le_u16(b"\x00", 0)
    with pytest.raises(BoundsViolation):
        le_u32(bytes(4), 1)
    with pytest.raises(BoundsViolation):
        le_s8(b"", 0)
    with pytest.raises(BoundsViolation):
        le_u16(bytes(4), -1)


def test_error_hierarchy():
    assert issubclass(BoundsViolation, TruncatedInput)
    assert issubclass(TruncatedInput, AssetError)
    assert issubclass(UnsupportedVariant, AssetError)
    assert issubclass(AssetError, ValueError)


def test_read_cstring_stops_at_nul():
    assert read_cstring(b"CZONE1.MNI\x00junk", 0, 13) == "CZONE1.MNI"
    assert read_cstring(b"ABCD", 1, 3) == "BCD"


def test_to_int():
    assert to_int(7) == 7
    assert to_int("0x10") == 16
    assert to_int("12") == 12
    with pytest.raises(ValueError):
        to_int(True)
    with pytest.raises(ValueError):
        to_int(1.5)


def test_load_config_json_and_yaml(tmp_path):
    j = tmp_path / "jobs.json"
    j.write_text('{"jobs": []}', encoding="utf-8")
    y = tmp_path / "jobs.yml"
    y.write_text("jobs:\n  - cmd: palette-info\n", encoding="utf-8")
    assert load_config(j) == {"jobs": []}
    assert load_config(y)["jobs"][0]["cmd"] == "palette-info"

    bad = tmp_path / "list.yaml"
    bad.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad)
    assert load_records(bad) == [1, 2]
