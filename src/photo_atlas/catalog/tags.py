"""Tag tree algorithms.

The tree is stored as flat rows with a parent reference. These helpers
rebuild it and traverse it with explicit stacks, so arbitrarily deep
trees never hit the interpreter's recursion limit.
"""

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from photo_atlas.catalog.models import Tag


def children_index(parents: Mapping[int, Optional[int]]) -> Dict[Optional[int], List[int]]:
    """Map each parent id (None for roots) to its child ids, in id order."""
    children: Dict[Optional[int], List[int]] = {}
    for tag_id in sorted(parents):
        children.setdefault(parents[tag_id], []).append(tag_id)
    return children


def build_tree(tags: Iterable[Tag]) -> List[Tag]:
    """Group flat tags on their parent reference and return the roots.

    A tag whose parent is not among ``tags`` (for instance when the list
    was filtered by category) becomes a root of the returned forest.
    """
    by_id = {tag.id: tag for tag in tags}
    roots: List[Tag] = []
    for tag in by_id.values():
        tag.children = []
    for tag in sorted(by_id.values(), key=lambda t: t.id or 0):
        parent = by_id.get(tag.parent_id) if tag.parent_id is not None else None
        if parent is None:
            roots.append(tag)
        else:
            parent.children.append(tag)
    return roots


def iter_subtree(root_id: int, children: Mapping[Optional[int], List[int]]) -> Iterator[Tuple[int, int]]:
    """Yield ``(tag_id, depth)`` for a subtree in pre-order, root at depth 0."""
    stack: List[Tuple[int, int]] = [(root_id, 0)]
    seen = set()
    while stack:
        tag_id, depth = stack.pop()
        if tag_id in seen:
            continue
        seen.add(tag_id)
        yield tag_id, depth
        for child_id in reversed(children.get(tag_id, [])):
            stack.append((child_id, depth + 1))


def post_order(root_id: int, children: Mapping[Optional[int], List[int]]) -> List[int]:
    """Subtree ids with every descendant listed before its ancestors."""
    return [tag_id for tag_id, _ in iter_subtree(root_id, children)][::-1]


def is_descendant(candidate_id: int, ancestor_id: int, parents: Mapping[int, Optional[int]]) -> bool:
    """Whether ``candidate_id`` lies in the subtree rooted at ``ancestor_id``.

    A node counts as its own descendant.
    """
    current: Optional[int] = candidate_id
    steps = 0
    while current is not None and steps <= len(parents):
        if current == ancestor_id:
            return True
        current = parents.get(current)
        steps += 1
    return False
