import json

from snippet_runner import WorkflowVariable
from snippet_runner.resolver import (
    coerce_variable_value,
    collect_block_data,
    get_nested_value,
    normalize_block_name,
    resolve_code_variables,
    sanitize_identifier,
)


def test_sanitize_identifier() -> None:
    assert sanitize_identifier("my block.out-put") == "my_block_out_put"
    assert sanitize_identifier("ok_123") == "ok_123"


def test_normalize_block_name() -> None:
    assert normalize_block_name("Block 1") == "block1"
    assert normalize_block_name("  API  Call ") == "apicall"


def test_get_nested_value_traverses_mappings_and_lists() -> None:
    data = {"a": {"b": [10, {"c": "deep"}]}, "flat.key": 1}

    assert get_nested_value(data, "a.b.0") == 10
    assert get_nested_value(data, "a.b.1.c") == "deep"
    assert get_nested_value(data, "flat.key") == 1
    assert get_nested_value(data, "a.missing.c") is None
    assert get_nested_value(None, "a") is None


def test_workflow_variables_are_coerced_by_type() -> None:
    assert coerce_variable_value(WorkflowVariable("n", "number", "42")) == 42
    assert coerce_variable_value(WorkflowVariable("n", "number", "2.5")) == 2.5
    assert coerce_variable_value(WorkflowVariable("n", "number", "abc")) is None
    assert coerce_variable_value(WorkflowVariable("f", "boolean", "true")) is True
    assert coerce_variable_value(WorkflowVariable("f", "boolean", "yes")) is False
    assert coerce_variable_value(WorkflowVariable("j", "json", '{"a": 1}')) == {"a": 1}
    assert coerce_variable_value(WorkflowVariable("j", "json", "{broken")) == "{broken"
    assert coerce_variable_value(WorkflowVariable("s", "string", 7)) == 7


def test_workflow_variable_pass_binds_identifier() -> None:
    resolved = resolve_code_variables(
        "const n = <variable.max retries>;\nreturn n * <variable.max retries>",
        workflow_variables={"v1": WorkflowVariable("max retries", "number", "3")},
    )
    # Display names are matched with whitespace removed, so the token name must be too.
    assert resolved.resolved_code == "const n = ;\nreturn n * "

    resolved = resolve_code_variables(
        "const n = <variable.maxretries>;\nreturn n * <variable.maxretries>",
        workflow_variables={"v1": WorkflowVariable("max retries", "number", "3")},
    )
    assert resolved.resolved_code == (
        "const n = __variable_maxretries;\nreturn n * __variable_maxretries"
    )
    assert resolved.context_variables == {"__variable_maxretries": 3}


def test_missing_workflow_variable_becomes_empty_text() -> None:
    resolved = resolve_code_variables("x = <variable.missing>")

    assert resolved.resolved_code == "x = "
    assert resolved.context_variables == {}


def test_environment_pass_prefers_env_vars_over_params() -> None:
    resolved = resolve_code_variables(
        "fetch({{API_URL}}, {{TOKEN}}, {{NOPE}})",
        params={"TOKEN": "from-params", "API_URL": "ignored"},
        env_vars={"API_URL": "https://api.example.com"},
    )

    assert resolved.resolved_code == "fetch(__var_API_URL, __var_TOKEN, __var_NOPE)"
    assert resolved.context_variables == {
        "__var_API_URL": "https://api.example.com",
        "__var_TOKEN": "from-params",
        "__var_NOPE": "",
    }


def test_tag_pass_looks_up_params_then_block_data() -> None:
    resolved = resolve_code_variables(
        "return [<start.input>, <agent1.content>, <unknown.path>]",
        params={"start": {"input": "hi"}},
        block_data={"agent1": {"content": "answer"}},
    )

    assert resolved.resolved_code == (
        "return [__tag_start_input, __tag_agent1_content, __tag_unknown_path]"
    )
    assert resolved.context_variables["__tag_start_input"] == "hi"
    assert resolved.context_variables["__tag_agent1_content"] == "answer"
    assert resolved.context_variables["__tag_unknown_path"] == ""


def test_tag_pass_uses_normalized_block_names() -> None:
    resolved = resolve_code_variables(
        "<block1.response.data>",
        block_data={"b1.response.data": "hello"},
        block_name_mapping={"Block 1": "b1"},
    )

    assert resolved.resolved_code == "__tag_block1_response_data"
    assert resolved.context_variables == {"__tag_block1_response_data": "hello"}


def test_tag_pass_keeps_falsy_values() -> None:
    resolved = resolve_code_variables(
        "return [<b1.count>, <b1.flag>]",
        block_data={"b1": {"count": 0, "flag": False}},
    )
    assert resolved.context_variables == {"__tag_b1_count": 0, "__tag_b1_flag": False}


def test_tag_pass_reparses_long_stringified_json() -> None:
    payload = {"items": [{"id": i, "name": f"item-{i}"} for i in range(10)]}
    encoded = json.dumps(payload)
    short = json.dumps({"a": 1})

    resolved = resolve_code_variables(
        "return [<b1.body>, <b1.small>]",
        block_data={"b1": {"body": encoded, "small": short}},
    )

    assert resolved.context_variables["__tag_b1_body"] == payload
    assert resolved.context_variables["__tag_b1_small"] == short


def test_passes_run_in_order_without_rescanning() -> None:
    resolved = resolve_code_variables(
        "return '{{KEY}}' + <variable.v>",
        env_vars={"KEY": "<variable.v>"},
        workflow_variables={"x": WorkflowVariable("v", "plain", "value")},
    )

    # References inside string literals are replaced as well.
    assert resolved.resolved_code == "return '__var_KEY' + __variable_v"
    assert resolved.context_variables["__var_KEY"] == "<variable.v>"


def test_comparison_operators_are_not_tags() -> None:
    resolved = resolve_code_variables("if (a < b && c > d) { return 1 }")
    assert resolved.resolved_code == "if (a < b && c > d) { return 1 }"
    assert resolved.context_variables == {}


def test_collect_block_data_maps_names_to_ids() -> None:
    data, names = collect_block_data(
        {"b1": {"out": 1}, "b2": None},
        {"b1": "Block 1", "b2": "Block 2"},
    )

    assert data == {"b1": {"out": 1}}
    assert names == {"Block 1": "b1", "block1": "b1"}


def test_resolving_resolved_code_is_a_no_op() -> None:
    first = resolve_code_variables(
        "return [<variable.count>, {{TOKEN}}, <block1.response.data>]",
        env_vars={"TOKEN": "abc"},
        workflow_variables={"v1": WorkflowVariable("count", "number", "3")},
        block_data={"b1.response.data": "hello"},
        block_name_mapping={"Block 1": "b1"},
    )

    again = resolve_code_variables(first.resolved_code)

    assert again.resolved_code == first.resolved_code
    assert again.context_variables == {}
