"""In-memory forest of guide groups and rules."""

from dataclasses import dataclass, field
from typing import Literal

from ssgkb.db.models import Group, Guide, Rule


@dataclass
class GuideTree:
    """A guide with every group and rule it owns (unordered)."""

    guide: Guide
    groups: list[Group]
    rules: list[Rule]


@dataclass
class TreeNode:
    """A group or rule node; `kind` tells which fields are meaningful."""

    kind: Literal["group", "rule"]
    id: str
    parent_id: str
    level: int
    title: str
    severity: str = ""  # rules only
    group_count: int = 0  # groups only
    rule_count: int = 0  # groups only
    children: list["TreeNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize the node and its subtree."""
        data = {
            "kind": self.kind,
            "id": self.id,
            "parent_id": self.parent_id,
            "level": self.level,
            "title": self.title,
            "children": [child.to_dict() for child in self.children],
        }
        if self.kind == "rule":
            data["severity"] = self.severity
        else:
            data["group_count"] = self.group_count
            data["rule_count"] = self.rule_count
        return data


def _sort_key(node: TreeNode) -> tuple[str, str]:
    return (node.title, node.id)


def build_forest(groups: list[Group], rules: list[Rule]) -> list[TreeNode]:
    """Link groups and rules into a forest.

    A node with an empty parent id is a root. Otherwise it is attached to the
    group whose id equals its parent id; when no such group exists (the parent
    is a benchmark node, or simply missing) the node stays a root. Rule nodes
    use their group id as parent id.

    Args:
        groups: Groups of one guide.
        rules: Rules of the same guide.

    Returns:
        Root nodes ordered by (title, id); every children list uses the same order.
    """
    by_id: dict[str, TreeNode] = {}
    nodes: list[TreeNode] = []

    for group in groups:
        node = TreeNode(
            kind="group",
            id=group.id,
            parent_id=group.parent_id or "",
            level=group.level or 0,
            title=group.title or "",
            group_count=group.group_count or 0,
            rule_count=group.rule_count or 0,
        )
        by_id[node.id] = node
        nodes.append(node)

    for rule in rules:
        nodes.append(
            TreeNode(
                kind="rule",
                id=rule.id,
                parent_id=rule.group_id or "",
                level=rule.level or 0,
                title=rule.title or "",
                severity=rule.severity or "",
            )
        )

    roots: list[TreeNode] = []
    for node in nodes:
        parent = by_id.get(node.parent_id) if node.parent_id else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.children.append(node)

    for node in nodes:
        node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)
    return roots
