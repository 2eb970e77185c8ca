import pytest

from nodemetrics.helper import ValueType
from nodemetrics.meminfo_numa import (
    MeminfoNumaCollector,
    get_mem_info_numa,
    parse_mem_info_numa,
    parse_mem_info_numa_stat,
)

_FIELDS = [
    "MemTotal", "MemFree", "MemUsed", "Active", "Inactive", "Active(anon)",
    "Inactive(anon)", "Active(file)", "Inactive(file)", "Unevictable", "Mlocked",
    "Dirty", "Writeback", "FilePages", "Mapped", "AnonPages", "Shmem", "KernelStack",
    "PageTables", "NFS_Unstable", "Bounce", "WritebackTmp", "Slab", "SReclaimable",
    "SUnreclaim", "AnonHugePages",
]
_NO_UNIT = ["HugePages_Total", "HugePages_Free", "HugePages_Surp"]


def _meminfo(node, values):
    lines = [f"Node {node} {key}:   {values.get(key, 1000)} kB" for key in _FIELDS]
    lines += [f"Node {node} {key}:     0" for key in _NO_UNIT]
    return "\n".join(lines) + "\n"


NODE0_MEMINFO = _meminfo(0, {"Active(anon)": 691324, "AnonHugePages": 147456})
NODE1_MEMINFO = _meminfo(1, {"Inactive(anon)": 285088, "FilePages": 83579188})

NODE0_NUMASTAT = """numa_hit 193460335812
numa_miss 12624528
numa_foreign 59858623300
interleave_hit 57146
local_node 193454780853
other_node 18179487
"""

NODE1_NUMASTAT = """numa_hit 326720946761
numa_miss 59858626709
numa_foreign 12624528
interleave_hit 57286
local_node 326719046550
other_node 59860526920
"""


def _lines(text):
    return text.splitlines(keepends=True)


def test_mem_info_numa_node0():
    mem_info = parse_mem_info_numa(_lines(NODE0_MEMINFO))
    assert mem_info[5].value == 707915776.0
    assert mem_info[5].metric_name == "Active_anon"
    assert mem_info[25].value == 150994944.0
    assert mem_info[5].numa_node == "0"
    assert mem_info[5].metric_type is ValueType.GAUGE


def test_mem_info_numa_node1():
    mem_info = parse_mem_info_numa(_lines(NODE1_MEMINFO))
    assert mem_info[6].value == 291930112.0
    assert mem_info[13].value == 85585088512.0


def test_mem_info_numa_no_unit():
    mem_info = parse_mem_info_numa(["Node 2 HugePages_Total:  7\n", "\n"])
    assert [(m.metric_name, m.value, m.numa_node) for m in mem_info] == [
        ("HugePages_Total", 7.0, "2")
    ]


@pytest.mark.parametrize(
    "line",
    [
        "Node 0 MemTotal: 12 MB",
        "Node 0 MemTotal: 12 kB extra",
        "Node 0 MemTotal: abc kB",
        "Node 0",
    ],
)
def test_mem_info_numa_invalid(line):
    with pytest.raises(ValueError):
        parse_mem_info_numa([line])


def test_mem_info_numa_stat_node0():
    numa_stat = parse_mem_info_numa_stat(_lines(NODE0_NUMASTAT), "0")
    assert numa_stat[0].value == 193460335812.0
    assert numa_stat[0].metric_name == "numa_hit_total"
    assert numa_stat[4].value == 193454780853.0
    assert numa_stat[0].metric_type is ValueType.COUNTER


def test_mem_info_numa_stat_node1():
    numa_stat = parse_mem_info_numa_stat(_lines(NODE1_NUMASTAT), "1")
    assert numa_stat[1].value == 59858626709.0
    assert numa_stat[5].value == 59860526920.0
    assert {m.numa_node for m in numa_stat} == {"1"}


def test_mem_info_numa_stat_invalid():
    with pytest.raises(ValueError):
        parse_mem_info_numa_stat(["numa_hit 1 2"], "0")
    with pytest.raises(ValueError):
        parse_mem_info_numa_stat(["numa_hit many"], "0")


def _build_sys(tmp_path):
    base = tmp_path / "sys" / "devices" / "system" / "node"
    for node, meminfo, numastat in (
        ("node0", NODE0_MEMINFO, NODE0_NUMASTAT),
        ("node1", NODE1_MEMINFO, NODE1_NUMASTAT),
    ):
        (base / node).mkdir(parents=True)
        (base / node / "meminfo").write_text(meminfo, encoding="utf-8")
        (base / node / "numastat").write_text(numastat, encoding="utf-8")
    (base / "possible").write_text("0-1\n", encoding="utf-8")
    return tmp_path / "sys"


def test_get_mem_info_numa(tmp_path):
    metrics = get_mem_info_numa(_build_sys(tmp_path))
    per_node = len(_FIELDS) + len(_NO_UNIT) + 6
    assert len(metrics) == 2 * per_node
    assert [m.numa_node for m in metrics[:per_node]] == ["0"] * per_node
    assert metrics[per_node].metric_name == "MemTotal"
    assert metrics[per_node].numa_node == "1"


def test_get_mem_info_numa_missing_numastat(tmp_path):
    sys_path = _build_sys(tmp_path)
    (sys_path / "devices" / "system" / "node" / "node1" / "numastat").unlink()
    with pytest.raises(FileNotFoundError):
        get_mem_info_numa(sys_path)


def test_collector_update(tmp_path):
    metrics = MeminfoNumaCollector(sys_path=_build_sys(tmp_path)).update()
    by_key = {(m.name, m.labels["node"]): m for m in metrics}
    assert by_key[("node_memory_numa_Active_anon", "0")].value == 707915776.0
    hit = by_key[("node_memory_numa_numa_hit_total", "1")]
    assert hit.value == 326720946761.0
    assert hit.value_type is ValueType.COUNTER
    assert hit.help == "Memory information field numa_hit_total."