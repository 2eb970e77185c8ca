import pytest

from nodemetrics.helper import ValueType
from nodemetrics.meminfo import MeminfoCollector, parse_mem_info

MEMINFO = """\
MemTotal:        3742148 kB
MemFree:          225472 kB
Active(anon):     128 kB
HugePages_Total:       0
HugePages_Free:        0

DirectMap4k:       52224 kB
DirectMap2M:     3698688 kB
"""


def test_parse_mem_info_values():
    mem_info = parse_mem_info(MEMINFO.splitlines())
    assert mem_info["MemTotal_bytes"] == 3831959552.0
    assert mem_info["DirectMap2M_bytes"] == 3787456512.0


def test_parse_mem_info_parentheses_and_no_unit():
    mem_info = parse_mem_info(MEMINFO.splitlines())
    assert "Active_anon_bytes" in mem_info
    assert mem_info["HugePages_Total"] == 0.0
    assert "HugePages_Total_bytes" not in mem_info


def test_parse_mem_info_skips_blank_lines():
    assert parse_mem_info(["", "   "]) == {}


def test_parse_mem_info_bad_value():
    with pytest.raises(ValueError, match="invalid value"):
        parse_mem_info(["MemTotal: abc kB"])


def test_parse_mem_info_too_many_fields():
    with pytest.raises(ValueError, match="invalid line"):
        parse_mem_info(["MemTotal: 1 kB extra"])


def test_collector_update(tmp_path):
    (tmp_path / "meminfo").write_text(MEMINFO)
    metrics = {m.name: m for m in MeminfoCollector(proc_path=tmp_path).update()}
    total = metrics["node_memory_MemTotal_bytes"]
    assert total.value == 3831959552.0
    assert total.value_type is ValueType.GAUGE
    assert total.help == "Memory information field MemTotal_bytes."
    assert len(metrics) == 7


def test_collector_counter_for_total_suffix(tmp_path):
    (tmp_path / "meminfo").write_text("Swapped_total: 5\n")
    (metric,) = MeminfoCollector(proc_path=tmp_path).update()
    assert metric.value_type is ValueType.COUNTER