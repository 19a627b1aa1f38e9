import os
import warnings

import pytest

from nsbox.userns import (
    ID_MAX,
    MAX_USER_MAPPINGS,
    UINT32_MAX,
    Id,
    IdMapError,
    IdRange,
    count_ids,
    format_id_map,
    generate_id_map,
    is_empty,
    load_group,
    load_proc_ids,
    load_subids,
    load_user,
    normalize,
    parse_id_map,
    project,
)


def test_parse_id_map_ranges():
    assert parse_id_map("0:1000:1,1:100000:65535") == [
        IdRange(0, 1000, 1),
        IdRange(1, 100000, 65535),
    ]


def test_parse_id_map_skips_empty_entries():
    assert parse_id_map(",0:1000:1,,") == [IdRange(0, 1000, 1)]


def test_parse_id_map_hex_values():
    assert parse_id_map("0x10:0:1") == [IdRange(16, 0, 1)]


@pytest.mark.parametrize("opt", ["0", "0:1000", "0:1000:"])
def test_parse_id_map_missing_fields(opt):
    with pytest.raises(IdMapError):
        parse_id_map(opt)


def test_parse_id_map_rejects_ulong_max():
    with pytest.raises(IdMapError):
        parse_id_map("-1:0:1")


def test_parse_id_map_too_many_ranges():
    opt = ",".join(f"{i}:{i}:1" for i in range(MAX_USER_MAPPINGS + 1))
    with pytest.raises(IdMapError):
        parse_id_map(opt)


def test_parse_id_map_accepts_max_ranges():
    opt = ",".join(f"{i}:{i}:1" for i in range(MAX_USER_MAPPINGS))
    assert len(parse_id_map(opt)) == MAX_USER_MAPPINGS


def test_load_subids_worked_example(tmp_path):
    subuid = tmp_path / "subuid"
    subuid.write_text("barney:100000:65535\nbarney:200000:100000\n")
    result = load_subids(str(subuid), Id(1000, "barney"))
    assert result == [
        IdRange(0, 1000, 1),
        IdRange(0, 100000, 65535),
        IdRange(0, 200000, 100000),
    ]


def test_load_subids_matches_numeric_id_and_ignores_others(tmp_path):
    subuid = tmp_path / "subuid"
    subuid.write_text("fred:500000:10\n1000:300000:5\ngarbage line\n")
    result = load_subids(str(subuid), Id(1000, "barney"))
    assert result == [IdRange(0, 1000, 1), IdRange(0, 300000, 5)]


def test_load_subids_missing_file(tmp_path):
    result = load_subids(str(tmp_path / "absent"), Id(1000, "barney"))
    assert result == [IdRange(0, 1000, 1)]


def test_load_subids_root_without_entries_maps_host(tmp_path):
    subuid = tmp_path / "subuid"
    subuid.write_text("barney:100000:65535\n")
    assert load_subids(str(subuid), Id(0, "root")) == [IdRange(0, 0, UINT32_MAX - 2)]


def test_project_worked_example():
    onto = [IdRange(0, 0, 1), IdRange(1, 10000, 998), IdRange(1000, 1000, 1)]
    result = project([IdRange(0, 0, 1001)], onto)
    assert result == [IdRange(0, 0, 1), IdRange(1, 1, 998), IdRange(1000, 1000, 1)]


def test_project_onto_identity_is_unchanged():
    id_map = [IdRange(0, 5, 10), IdRange(10, 100, 20)]
    onto = [IdRange(0, 0, 1000)]
    assert project(id_map, onto) == id_map


def test_project_drops_disjoint_ranges():
    assert project([IdRange(0, 500, 10)], [IdRange(0, 0, 100)]) == []


def test_project_never_grows_count():
    id_map = [IdRange(0, 50, 100)]
    onto = [IdRange(0, 0, 60), IdRange(80, 7000, 200)]
    result = project(id_map, onto)
    assert count_ids(result) <= count_ids(id_map)
    assert all(r.length > 0 for r in result)


def test_format_id_map_skips_empty():
    id_map = [IdRange(0, 1000, 1), IdRange(5, 5, 0), IdRange(1, 100000, 65535)]
    assert format_id_map(id_map) == "0 1000 1\n1 100000 65535\n"


def test_format_and_load_proc_ids_round_trip(tmp_path):
    id_map = [IdRange(0, 1000, 1), IdRange(1, 100000, 65535)]
    path = tmp_path / "uid_map"
    path.write_text(format_id_map(id_map))
    assert load_proc_ids(str(path)) == id_map


def test_load_proc_ids_kernel_layout(tmp_path):
    path = tmp_path / "uid_map"
    path.write_text("         0          0 4294967295\n")
    assert load_proc_ids(str(path)) == [IdRange(0, 0, UINT32_MAX)]


def test_load_proc_ids_invalid(tmp_path):
    path = tmp_path / "uid_map"
    path.write_text("0 0\n")
    with pytest.raises(IdMapError):
        load_proc_ids(str(path))


def test_load_proc_ids_missing(tmp_path):
    with pytest.raises(IdMapError):
        load_proc_ids(str(tmp_path / "absent"))


def test_normalize_sorts_by_outer():
    id_map = [IdRange(0, 300, 1), IdRange(1, 100, 1), IdRange(2, 200, 0)]
    result = normalize(id_map, False, False)
    assert [r.outer for r in result] == sorted(r.outer for r in result)
    assert len(result) == 2


def test_normalize_sorts_by_inner():
    id_map = [IdRange(9, 1, 1), IdRange(3, 2, 1), IdRange(6, 3, 1)]
    result = normalize(id_map, True, False)
    assert [r.inner for r in result] == sorted(r.inner for r in id_map)


def test_normalize_merges_contiguous():
    id_map = [IdRange(10, 110, 5), IdRange(0, 100, 10)]
    result = normalize(id_map, False, True)
    assert len(result) == 1
    assert result[0].inner == 0
    assert count_ids(result) == count_ids(id_map)


def test_normalize_keeps_noncontiguous():
    id_map = [IdRange(0, 100, 10), IdRange(50, 110, 5)]
    assert normalize(id_map, False, True) == id_map


def test_count_ids_and_empty():
    assert count_ids([IdRange(0, 0, 3), IdRange(3, 3, 4)]) == 7
    assert is_empty([IdRange(0, 0, 0)])
    assert not is_empty([IdRange(0, 0, 1)])


def test_count_ids_overflow():
    with pytest.raises(OverflowError):
        count_ids([IdRange(0, 0, UINT32_MAX), IdRange(0, 0, 1)])


def test_generate_id_map_skips_own_id():
    ident = Id(1000, "barney")
    allotted = [IdRange(0, 1000, 1), IdRange(0, 990, 20), IdRange(0, 100000, 65535)]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        result = generate_id_map(allotted, "/etc/subuid", ident)
    assert result[0] == IdRange(0, 1000, 1)
    assert all(not (r.outer <= 1000 < r.outer + r.length) for r in result[1:])
    assert count_ids(result) == 1 + 19 + 65535


def test_generate_id_map_inner_ids_are_contiguous():
    ident = Id(1000, "barney")
    allotted = [IdRange(0, 990, 20), IdRange(0, 100000, 65535)]
    result = generate_id_map(allotted, "/etc/subuid", ident)
    for prev, cur in zip(result, result[1:]):
        assert prev.inner + prev.length == cur.inner


def test_generate_id_map_warns_when_short():
    with pytest.warns(RuntimeWarning):
        result = generate_id_map([IdRange(0, 5000, 10)], "/etc/subuid", Id(1000, None))
    assert count_ids(result) == 11
    assert count_ids(result) < ID_MAX


def test_load_user_current():
    assert load_user(os.getuid()).id == os.getuid()


def test_load_group_current():
    assert load_group(os.getgid()).id == os.getgid()