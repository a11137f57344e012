import pytest

from pile import ScriptRunner, MappingHost, PileHost
from pile.pile_datatypes import (
    Code, Instruction, Block, HostHandle,
    UndefinedRegister, TypeMismatch, ArityMismatch, HostFailure, StackUnderflow, ParseError,
    RecursionLimit,
)

SUM_NAMES = """
; get the name of every element
push "Elements"
query
iload 0 {
\tpush "Name"
\tinfo
}
push 0 ; function register
map

; convert them to numbers
iload 0 {tonum}
push 0 ; function register
map

; keep only valid numbers
iload 0 {
\tpush nil
\t!=
}
push 0 ; function register
filter

; get the sum
iload 0 {+}
push 0 ; function register
push 0 ; initial number to add the values to
reduce

; automatically return sum as it's left on the stack
"""


def assert_ok(res, expected=None):
    assert res.status == "success", f"expected success, got {res.format_error()}"
    if expected is not None:
        assert res.value == expected, f"expected {expected!r}, got {res.value!r}"


class Element:
    def __init__(self, name):
        self.Name = name


class ElementsHost(PileHost):
    """Counts calls so tests can check what reached the host."""
    def __init__(self, names):
        self.elements = [Element(n) for n in names]
        self.queries = []
        self.infos = []

    def query(self, name):
        self.queries.append(name)
        if name != "Elements":
            raise KeyError(name)
        return self.elements

    def info(self, obj, name):
        self.infos.append(name)
        return getattr(obj, name)


# --- End-to-end scenario ---

def test_sum_of_numeric_element_names():
    host = ElementsHost(["3", "x", "7.5"])
    runner = ScriptRunner(host_object=host)
    res = runner.handle_script(SUM_NAMES)
    assert_ok(res, [10.5])
    assert host.queries == ["Elements"]
    assert host.infos == ["Name", "Name", "Name"]

def test_sum_with_mapping_host_records():
    host = MappingHost({"Elements": [{"Name": "1"}, {"Name": "2"}, {"Name": "nope"}]})
    res = ScriptRunner(host_object=host).handle_script(SUM_NAMES)
    assert_ok(res, [3.0])

def test_empty_query_flows_through_to_initial_value():
    host = ElementsHost([])
    res = ScriptRunner(host_object=host).handle_script(SUM_NAMES)
    assert_ok(res, [0.0])
    assert host.infos == []

def test_intermediate_pipeline_values():
    host = ElementsHost(["3", "x", "7.5"])
    runner = ScriptRunner(host_object=host)
    res = runner.handle_script("""
    push "Elements" query
    iload 0 { push "Name" info } push 0 map
    iload 0 { tonum } push 0 map
    dup
    iload 0 { push nil != } push 0 filter
    """)
    assert_ok(res, [[3.0, None, 7.5], [3.0, 7.5]])

def test_runs_are_independent():
    runner = ScriptRunner()
    assert_ok(runner.handle_script("iload 0 {tonum} push 1"), [1.0])
    res = runner.handle_script('push ["1"] push 0 map')
    assert res.status == "error"
    assert isinstance(res.error, UndefinedRegister)

def test_two_runners_do_not_share_state():
    a = ScriptRunner()
    b = ScriptRunner()
    a.handle_script("push 1")
    assert_ok(b.handle_script("push 2"), [2.0])


# --- Errors ---

def test_undefined_register_reports_position_and_location():
    res = ScriptRunner().handle_script('push ["1"]\npush 3\nmap')
    assert res.status == "error"
    assert isinstance(res.error, UndefinedRegister)
    assert res.error.position == 2
    assert res.error_token['line'] == 3
    assert "UndefinedRegister" in res.error_message
    assert res.format_error().startswith("Error on line 3")
    # Error is also emitted on the stderr channel
    assert res.side_effects[-1]['topics'] == ['stderr']
    assert res.value == []

def test_type_mismatch_inside_block_has_stacktrace():
    src = """
    push [1 2]
    iload 0 {
      push "a"
      +
    }
    push 0
    map
    """
    res = ScriptRunner().handle_script(src)
    assert res.status == "error"
    assert isinstance(res.error, TypeMismatch)
    assert res.error_token['line'] == 5
    assert "PILE stacktrace: (map) (+)" in res.error_message
    assert "> 5 |" in res.error_message

def test_arity_mismatch_is_reported():
    res = ScriptRunner().handle_script("push [1] iload 0 {dup} push 0 map")
    assert res.status == "error"
    assert isinstance(res.error, ArityMismatch)

def test_host_failure_propagates():
    host = ElementsHost(["1"])
    res = ScriptRunner(host_object=host).handle_script('push "Widgets" query')
    assert res.status == "error"
    assert isinstance(res.error, HostFailure)
    assert isinstance(res.error.__cause__, KeyError)
    assert "HostFailure" in res.error_message

def test_missing_attribute_is_host_failure():
    host = MappingHost({"Elements": [{"Name": "1"}]})
    res = ScriptRunner(host_object=host).handle_script(
        'push "Elements" query iload 0 { push "Colour" info } push 0 map'
    )
    assert isinstance(res.error, HostFailure)

def test_stack_underflow_at_top_level():
    res = ScriptRunner().handle_script("push 1 +")
    assert isinstance(res.error, StackUnderflow)
    assert res.error.position == 1

def test_parse_error_is_reported_before_execution():
    host = ElementsHost(["1"])
    res = ScriptRunner(host_object=host).handle_script('push "Elements" query frobnicate')
    assert res.status == "error"
    assert isinstance(res.error, ParseError)
    assert "frobnicate" in res.error_message
    # nothing ran
    assert host.queries == []

def test_malformed_text_is_parse_error():
    res = ScriptRunner().handle_script('iload 0 { tonum')
    assert res.status == "error"
    assert isinstance(res.error, ParseError)


# --- parse() and trace ---

def test_parse_returns_code():
    code = ScriptRunner().parse('iload 0 {push "Name" info} push 0')
    assert isinstance(code, Code)
    assert code == [
        Instruction('iload', (0, Block([Instruction('push', ("Name",)), Instruction('info')]))),
        Instruction('push', (0.0,)),
    ]

def test_parse_keeps_source_locations():
    code = ScriptRunner().parse("push 1\n  dup")
    assert code[1].loc['line'] == 2
    assert code[1].loc['col'] == 3

def test_trace_side_effects():
    runner = ScriptRunner(trace=True)
    res = runner.handle_script("push [1] iload 0 {tonum} push 0 map")
    assert_ok(res, [[1.0]])
    traces = [e['message'] for e in res.side_effects if e['topics'] == ['trace']]
    assert len(traces) == 5

def test_query_results_are_handles():
    host = ElementsHost(["a"])
    res = ScriptRunner(host_object=host).handle_script('push "Elements" query')
    assert_ok(res)
    (handles,) = res.value
    assert isinstance(handles[0], HostHandle)
    assert handles[0].obj is host.elements[0]


# --- Runaway nesting and host values ---

@pytest.mark.parametrize("src", [
    "iload 0 { push 0 call } push 1 push 0 call",
    "iload 0 { push [1] swap drop push 0 map } push [1] push 0 map",
])
def test_self_invoking_register_stops_with_recursion_limit(src):
    res = ScriptRunner().handle_script(src)
    assert res.status == "error"
    assert isinstance(res.error, RecursionLimit)
    assert res.error.position == 3
    assert "RecursionLimit" in res.error_message
    # the long chain of frames is abbreviated
    assert "more ..." in res.error_message

def test_oversized_host_number_is_reported_as_host_failure():
    class BigHost(ElementsHost):
        def info(self, obj, name):
            return 10 ** 400
    res = ScriptRunner(host_object=BigHost(["a"])).handle_script(SUM_NAMES)
    assert res.status == "error"
    assert isinstance(res.error, HostFailure)

def test_format_error_names_the_failing_instruction():
    res = ScriptRunner().handle_script('push ["1"]\npush 3\nmap')
    assert res.format_error().startswith("Error on line 3, col 1, instruction 2: UndefinedRegister")

def test_source_context_points_at_the_column():
    res = ScriptRunner().handle_script("push 1\n   +")
    lines = res.error_message.splitlines()
    marked = lines.index("> 2 |    +")
    assert lines[marked + 1] == "    |    ^"
