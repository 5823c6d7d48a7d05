from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.core.schemas import DeployDatasetRequest


@dataclass
class IndexedRequest:
    """A request plus its position in the caller's list."""

    index: int
    request: DeployDatasetRequest


@dataclass
class RequestGroup:
    data_source_name: str
    database: Optional[str]
    items: List[IndexedRequest] = field(default_factory=list)

    @property
    def env(self) -> str:
        # Data source lookup uses the env of the first request in the group
        return self.items[0].request.env

    @property
    def table_refs(self) -> List[Tuple[str, str]]:
        return [(item.request.name, item.request.schema_name) for item in self.items]


def group_requests(requests: List[DeployDatasetRequest]) -> List[RequestGroup]:
    """
    Partition requests by (data_source_name, database) so each warehouse is
    asked for its schema once. Every request ends up in exactly one group.
    """
    groups: Dict[Tuple[str, Optional[str]], RequestGroup] = {}
    for index, req in enumerate(requests):
        key = (req.data_source_name, req.database)
        if key not in groups:
            groups[key] = RequestGroup(data_source_name=key[0], database=key[1])
        groups[key].items.append(IndexedRequest(index=index, request=req))
    return list(groups.values())
