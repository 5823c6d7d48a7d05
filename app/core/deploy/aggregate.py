from typing import Iterable, List, Tuple

from app.core.schemas import (
    DeployDatasetsResponse,
    DeploymentFailure,
    DeploymentSuccess,
    DeploymentSummary,
    ValidationResult,
)


def merge_results(
    group_results: Iterable[List[Tuple[int, ValidationResult]]],
) -> List[ValidationResult]:
    """Flatten per-group results back into the caller's input order."""
    indexed = [pair for results in group_results for pair in results]
    indexed.sort(key=lambda pair: pair[0])
    return [result for _, result in indexed]


def build_summary(results: List[ValidationResult]) -> DeploymentSummary:
    successes: List[DeploymentSuccess] = []
    failures: List[DeploymentFailure] = []

    for r in results:
        if r.success:
            successes.append(
                DeploymentSuccess(
                    model_name=r.name,
                    data_source_name=r.data_source_name,
                    schema_name=r.schema_name,
                )
            )
        else:
            failures.append(
                DeploymentFailure(
                    model_name=r.name,
                    data_source_name=r.data_source_name,
                    schema_name=r.schema_name,
                    errors=list(r.errors),
                )
            )

    return DeploymentSummary(
        total_models=len(results),
        successful_models=len(successes),
        failed_models=len(failures),
        successes=successes,
        failures=failures,
    )


def build_response(results: List[ValidationResult]) -> DeployDatasetsResponse:
    return DeployDatasetsResponse(results=results, summary=build_summary(results))
