from app.core.deploy.aggregate import build_response, build_summary, merge_results
from app.core.schemas import DataSourceError, TableNotFoundError, ValidationResult


def result(name, success, errors=None):
    r = ValidationResult(name=name, data_source_name="ds", schema="public", success=success)
    for error in errors or []:
        r.add_error(error)
    return r


def test_merge_restores_input_order():
    """Group results merged in any order come back in input order"""
    group_b = [(3, result("d", True)), (1, result("b", False))]
    group_a = [(0, result("a", True)), (2, result("c", True))]

    merged = merge_results([group_b, group_a])

    assert [r.name for r in merged] == ["a", "b", "c", "d"]


def test_summary_counts_and_partitions():
    """Successes and failures are split in one pass and counts add up"""
    results = [
        result("orders", True),
        result("ghost", False, [TableNotFoundError(qualified_name="public.ghost")]),
        result("events", True),
        result("broken", False, [DataSourceError(message="Data source 'x' not found")]),
    ]

    summary = build_summary(results)

    assert summary.total_models == 4
    assert summary.successful_models == 2
    assert summary.failed_models == 2
    assert summary.successful_models + summary.failed_models == summary.total_models
    assert [s.model_name for s in summary.successes] == ["orders", "events"]
    assert [f.model_name for f in summary.failures] == ["ghost", "broken"]
    assert summary.failures[0].errors[0].error_type == "table_not_found"


def test_response_serializes_wire_names():
    """The response uses `schema` on the wire and tags every error"""
    response = build_response(
        [result("ghost", False, [TableNotFoundError(qualified_name="public.ghost")])]
    )

    payload = response.model_dump(by_alias=True, mode="json")

    assert payload["results"][0]["schema"] == "public"
    assert payload["results"][0]["errors"][0] == {
        "error_type": "table_not_found",
        "qualified_name": "public.ghost",
        "message": "Table 'public.ghost' not found in data source",
    }
    assert payload["summary"]["failures"][0]["schema"] == "public"


def test_empty_batch():
    summary = build_summary([])
    assert (summary.total_models, summary.successful_models, summary.failed_models) == (0, 0, 0)
