"""
bom_graph.py

In-memory BOM structure for one or more root items.

Loading is done breadth-first, one bulk catalog read per level, into a
networkx DiGraph keyed by item code. The explicit tree used by the
explosion is then built depth-first from that adjacency map, with the
active path tracked for cycle detection and a depth guard.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import networkx as nx

from bom_errors import CycleError, DepthLimitExceededError, NotFoundError, UnitMismatchError
from bom_models import BomComponent, BomMaster, ConsumptionType, Item, ItemType
from config import EngineConfig
from item_catalog import ItemCatalog
from unit_converter import UnitConverter

logger = logging.getLogger(__name__)


@dataclass
class BomNode:
    """One occurrence of an item in the exploded tree."""
    item: Item
    level: int
    path: Tuple[str, ...]
    component: Optional[BomComponent] = None  # None for the root
    bom: Optional[BomMaster] = None           # set when the node is expanded
    conversion_factor: Decimal = Decimal("1")  # line uom -> item stock uom
    children: List["BomNode"] = field(default_factory=list)

    @property
    def item_code(self) -> str:
        return self.item.item_code

    @property
    def is_expanded(self) -> bool:
        return self.bom is not None


@dataclass
class _Structure:
    """Everything fetched for a set of roots."""
    items: Dict[str, Item] = field(default_factory=dict)
    boms: Dict[str, BomMaster] = field(default_factory=dict)
    components: Dict[str, List[BomComponent]] = field(default_factory=dict)
    graph: nx.DiGraph = field(default_factory=nx.DiGraph)


class BomGraph:
    """The exploded tree of a single root item."""

    def __init__(self, root: BomNode, structure: nx.DiGraph, as_of_date: date):
        self.root = root
        self.structure = structure
        self.as_of_date = as_of_date

    @property
    def item_code(self) -> str:
        return self.root.item_code

    @classmethod
    def build(cls, catalog: ItemCatalog, converter: UnitConverter, item_code: str,
              as_of_date: date, config: Optional[EngineConfig] = None) -> "BomGraph":
        return cls.build_many(catalog, converter, [item_code], as_of_date, config)[0]

    @classmethod
    def build_many(cls, catalog: ItemCatalog, converter: UnitConverter, item_codes: Sequence[str],
                   as_of_date: date, config: Optional[EngineConfig] = None) -> List["BomGraph"]:
        """
        Build one tree per root, sharing a single batched load.

        Raises NotFoundError, CycleError, UnitMismatchError or
        DepthLimitExceededError; nothing is returned if any root fails.
        """
        config = config or catalog.config
        structure = _load_structure(catalog, item_codes, as_of_date, config.max_depth)
        builder = _TreeBuilder(structure, converter, config.max_depth, as_of_date)
        graphs = []
        for code in item_codes:
            root = builder.build_root(code)
            graphs.append(cls(root, structure.graph, as_of_date))
        return graphs

    def walk(self) -> Iterator[BomNode]:
        """Nodes depth-first in BOM order, root first."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> Iterator[BomNode]:
        return (node for node in self.walk() if node is not self.root and not node.is_expanded)

    def to_networkx(self) -> nx.DiGraph:
        """
        Item-level view of this tree as a directed graph.

        Nodes carry label, item_type, uom and their shallowest level; edges
        carry the summed quantity_per_unit of the lines joining them.
        """
        g = nx.DiGraph()
        for node in self.walk():
            code = node.item_code
            if code in g:
                g.nodes[code]["level"] = min(g.nodes[code]["level"], node.level)
            else:
                g.add_node(code, label=code, title=node.item.item_name,
                           item_type=node.item.item_type.value,
                           uom=node.item.unit_of_measure, level=node.level)
            for child in node.children:
                if not g.has_edge(code, child.item_code):
                    lines = self.structure[code][child.item_code]["lines"]
                    g.add_edge(code, child.item_code,
                               quantity=sum((line.quantity_per_unit for line in lines), Decimal("0")))
        return g


def _load_structure(catalog: ItemCatalog, root_codes: Sequence[str], as_of_date: date,
                    max_depth: int) -> _Structure:
    """
    Fetch items, active BOMs and lines level by level.

    Each level costs one bulk item read, one bulk BOM read and one bulk
    line read. Codes already fetched are not fetched again, so cyclic data
    still terminates; the cycle itself is reported by the tree builder.
    """
    structure = _Structure()
    frontier = list(dict.fromkeys(root_codes))
    level = 0
    while frontier:
        structure.items.update(catalog.get_items(frontier))
        expandable = [c for c in frontier if not structure.items[c].item_type.is_stocked_leaf]
        boms = catalog.find_active_boms(expandable, as_of_date)
        structure.boms.update(boms)
        lines_by_bom = catalog.get_components(bom.id for bom in boms.values())

        next_frontier = []
        for code, bom in boms.items():
            lines = lines_by_bom.get(bom.id, [])
            structure.components[bom.id] = lines
            if not lines:
                logger.warning(f"Active BOM {bom.id} for {code} has no components")
            for line in lines:
                child = line.component_item_code
                if structure.graph.has_edge(code, child):
                    structure.graph[code][child]["lines"].append(line)
                else:
                    structure.graph.add_edge(code, child, lines=[line])
                if child not in structure.items and child not in next_frontier \
                        and child not in frontier:
                    next_frontier.append(child)

        logger.debug(f"Loaded BOM level {level}: {len(frontier)} item(s), {len(boms)} BOM(s)")
        if level >= max_depth:
            # Anything deeper trips the depth guard before its item is needed.
            break
        frontier = next_frontier
        level += 1
    return structure


class _TreeBuilder:
    """Depth-first tree construction over a loaded structure."""

    def __init__(self, structure: _Structure, converter: UnitConverter, max_depth: int,
                 as_of_date: date):
        self.structure = structure
        self.converter = converter
        self.max_depth = max_depth
        self.as_of_date = as_of_date

    def build_root(self, item_code: str) -> BomNode:
        item = self.structure.items[item_code]
        bom = self.structure.boms.get(item_code)
        if bom is None:
            raise NotFoundError(
                f"No active BOM for {item_code} on {self.as_of_date.isoformat()}",
                item_codes=[item_code],
            )
        root = BomNode(item=item, level=0, path=(item_code,), bom=bom)
        self._expand(root)
        return root

    def _expand(self, node: BomNode) -> None:
        for line in self.structure.components.get(node.bom.id, []):
            node.children.append(self._build_child(line, node))

    def _build_child(self, line: BomComponent, parent: BomNode) -> BomNode:
        code = line.component_item_code
        if code in parent.path:
            raise CycleError(parent.path[parent.path.index(code):] + (code,))
        path = parent.path + (code,)
        level = parent.level + 1
        if level > self.max_depth:
            raise DepthLimitExceededError(self.max_depth, path)

        item = self.structure.items[code]
        try:
            factor = self.converter.factor(line.uom, item.unit_of_measure, code)
        except UnitMismatchError as e:
            raise UnitMismatchError(e.from_uom, e.to_uom, code, path=path) from e

        bom = None
        if line.consumption_type != ConsumptionType.BYPRODUCT \
                and not item.item_type.is_stocked_leaf:
            bom = self.structure.boms.get(code)
            if bom is None and item.item_type == ItemType.WORK_IN_PROGRESS:
                raise NotFoundError(
                    f"No active BOM for work-in-progress item {code} on "
                    f"{self.as_of_date.isoformat()}",
                    item_codes=[code],
                    path=path,
                )

        node = BomNode(item=item, level=level, path=path, component=line, bom=bom,
                       conversion_factor=factor)
        if bom is not None:
            self._expand(node)
        return node
