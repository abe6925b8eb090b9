"""
Node-RED flow models.

A flows document is a flat list of nodes. Tabs and subflows act as folders,
function and ui-template nodes carry the code fields that get projected onto
source files. Only a fixed set of node types and fields is recognized; every
other attribute is carried along untouched so that a push writes back exactly
what was fetched plus the local edits.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# Folder used for leaf nodes whose container is missing or unnamed. It is
# reserved in the global naming scope before any container is resolved.
DEFAULT_FOLDER_NAME = "default"

# Node types whose role fields are projected onto files
SUPPORTED_FLOW_FILE_TYPES = frozenset({"function", "ui-template"})

# Folder node type -> attribute holding its display name
FLOW_FOLDER_PROPERTIES: Dict[str, str] = {
    "tab": "label",
    "subflow": "name",
}


@dataclass(frozen=True)
class FlowFileProperty:
    """A recognized role field and the file extension it is written with."""
    type: str
    extension: str


# Ordered: files of an item are emitted in this order
FLOW_FILE_PROPERTIES: Tuple[FlowFileProperty, ...] = (
    FlowFileProperty("func", ".js"),
    FlowFileProperty("format", ".vue"),
    FlowFileProperty("initialize", ".initialize.js"),
    FlowFileProperty("finalize", ".finalize.js"),
    FlowFileProperty("info", ".info.md"),
)

ROLE_TYPES = tuple(prop.type for prop in FLOW_FILE_PROPERTIES)

# Extensions owned by the reconciler. Files with any other suffix are never
# deleted, whatever the manifest says.
MANAGED_EXTENSIONS = frozenset({".js", ".vue", ".md"})


class FlowItem(BaseModel):
    """
    A single node of a Node-RED flows document.

    Unknown attributes are kept as extras so that ``to_payload`` reproduces
    the node as it was fetched.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    z: Optional[str] = None
    name: Optional[str] = None
    label: Optional[str] = None

    # Role fields. Typed loosely because other node types reuse the same
    # attribute names for non-string values.
    func: Optional[Any] = None
    format: Optional[Any] = None
    initialize: Optional[Any] = None
    finalize: Optional[Any] = None
    info: Optional[Any] = None

    def get_role(self, role: str) -> Optional[str]:
        """Return the role field if it holds a non-blank string"""
        value = getattr(self, role, None)
        if isinstance(value, str) and value.strip():
            return value
        return None

    def set_role(self, role: str, content: str) -> None:
        if role not in ROLE_TYPES:
            raise ValueError(f"Unknown role field: {role}")
        setattr(self, role, content)

    def display_name(self) -> Optional[str]:
        """Display name for folder nodes (label for tabs, name for subflows)"""
        attribute = FLOW_FOLDER_PROPERTIES.get(self.type)
        if not attribute:
            return None
        return getattr(self, attribute, None) or None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back to the wire form, omitting attributes the server never sent"""
        return self.model_dump(exclude_unset=True)


class FlowsResponse(BaseModel):
    """Body of GET /flows with the v2 admin API"""
    flows: List[FlowItem] = Field(default_factory=list)
    rev: str

    def to_payload(self) -> Dict[str, Any]:
        return {"flows": [item.to_payload() for item in self.flows], "rev": self.rev}
