from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cache_layer import cache_prefix, make_cache_key


@dataclass(frozen=True)
class ResourceSpec:
    resource_type: str
    label: str
    plural: str
    path: str
    stage_field: str = "status"
    scope_field: str = "workspaceId"

    def scope_prefix(self, scope_id: str) -> str:
        return cache_prefix(self.resource_type, scope=[scope_id])

    def list_key(self, scope_id: str, params: dict[str, Any] | None = None) -> str:
        return make_cache_key(self.resource_type, scope=[scope_id], params=params or {})


JOB = ResourceSpec("job", "Job", "jobs", "/jobs", stage_field="status")
CANDIDATE = ResourceSpec("candidate", "Candidate", "candidates", "/candidates", stage_field="stage")
APPLICATION = ResourceSpec("application", "Application", "applications", "/applications", stage_field="stage")
INTERVIEW = ResourceSpec("interview", "Interview", "interviews", "/interviews", stage_field="status")
FLOW_TEMPLATE = ResourceSpec(
    "flow_template", "Flow template", "flowTemplates", "/flow-templates", stage_field="status"
)

RESOURCES: dict[str, ResourceSpec] = {
    s.resource_type: s for s in (JOB, CANDIDATE, APPLICATION, INTERVIEW, FLOW_TEMPLATE)
}


def get_resource(resource_type: str) -> ResourceSpec:
    key = str(resource_type or "").strip().lower()
    if key not in RESOURCES:
        raise KeyError(f"unknown resource type: {resource_type}")
    return RESOURCES[key]
