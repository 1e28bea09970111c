from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
import random
from typing import TYPE_CHECKING, Any
import uuid

from topoevo.exceptions import GenomeError, TopologyError
from topoevo.genome.activations import resolve_activation

if TYPE_CHECKING:
    from topoevo.plasticity.config import PruningSchedule

__all__ = ["NodeRole", "Node", "Connection", "PlasticityState", "Genome"]


class NodeRole(str, Enum):
    INPUT = "input"
    HIDDEN = "hidden"
    OUTPUT = "output"


@dataclass(eq=False)
class Node:
    """A neuron. ``index`` mirrors the node's position in ``Genome.nodes``."""

    role: NodeRole
    bias: float = 0.0
    activation: str = "sigmoid"
    index: int = -1
    state: float = field(default=0.0, repr=False)


@dataclass(eq=False)
class Connection:
    """Directed weighted edge between two nodes of the same genome.

    ``total_delta_weight`` and ``previous_delta_weight`` are written by a
    trainer and only read as a saliency estimate during pruning.
    """

    from_node: Node
    to_node: Node
    weight: float
    enabled: bool = True
    gater: Node | None = None
    total_delta_weight: float = 0.0
    previous_delta_weight: float = 0.0

    @property
    def is_self_loop(self) -> bool:
        return self.from_node is self.to_node


@dataclass
class PlasticityState:
    """Per-genome pruning bookkeeping.

    Baselines are write-once: plasticity code only fills them while unset.
    """

    schedule: PruningSchedule | None = None
    scheduled_baseline: int | None = None
    evolutionary_baseline: int | None = None

    def copy(self) -> PlasticityState:
        return PlasticityState(
            schedule=self.schedule.model_copy() if self.schedule is not None else None,
            scheduled_baseline=self.scheduled_baseline,
            evolutionary_baseline=self.evolutionary_baseline,
        )


class Genome:
    """Node/connection graph evaluated as a neural network.

    Nodes are kept in topological order when ``enforce_acyclic`` is set:
    every connection satisfies ``from_node.index < to_node.index``. Without
    acyclic enforcement, back-edges and self-loops read the previous
    activation of their source node.
    """

    def __init__(
        self,
        nodes: Iterable[Node] = (),
        connections: Iterable[Connection] = (),
        *,
        enforce_acyclic: bool = True,
        genome_id: str | None = None,
    ):
        self.id: str = genome_id or str(uuid.uuid4())
        self.nodes: list[Node] = []
        self.connections: list[Connection] = []
        self.enforce_acyclic = enforce_acyclic

        self.score: float | None = None
        self.species: int | None = None
        self.parents: list[str] = []
        self.depth: int = 0

        self.plasticity = PlasticityState()
        # Output vectors observed while the last evaluation ran
        self.decision_trace: list[list[float]] = []

        self.topology_dirty = True
        self._incoming: list[list[Connection]] = []

        for node in nodes:
            self.add_node(node)
        for conn in connections:
            self.connect(
                conn.from_node,
                conn.to_node,
                conn.weight,
                enabled=conn.enabled,
                gater=conn.gater,
            )

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def create(
        cls,
        n_inputs: int,
        n_outputs: int,
        *,
        rng: random.Random | None = None,
        output_activation: str = "sigmoid",
        enforce_acyclic: bool = True,
        weight_range: float = 1.0,
    ) -> Genome:
        """Fully connected input→output genome with random weights."""
        if n_inputs < 1 or n_outputs < 1:
            raise GenomeError(
                f"Genome needs at least one input and one output, got {n_inputs}/{n_outputs}"
            )
        rng = rng or random.Random()
        genome = cls(enforce_acyclic=enforce_acyclic)
        inputs = [
            genome.add_node(Node(NodeRole.INPUT, activation="identity"))
            for _ in range(n_inputs)
        ]
        outputs = [
            genome.add_node(Node(NodeRole.OUTPUT, activation=output_activation))
            for _ in range(n_outputs)
        ]
        for src in inputs:
            for dst in outputs:
                genome.connect(src, dst, rng.uniform(-weight_range, weight_range))
        return genome

    def add_node(self, node: Node, position: int | None = None) -> Node:
        resolve_activation(node.activation)
        if position is None or position >= len(self.nodes):
            self.nodes.append(node)
        else:
            self.nodes.insert(max(position, 0), node)
        self._reindex()
        self.topology_dirty = True
        return node

    def split_connection(
        self, conn: Connection, activation: str = "tanh"
    ) -> Node:
        """Replace *conn* with ``from → new hidden → to``.

        The incoming edge gets weight 1 and the outgoing edge inherits the
        old weight, so the function computed is roughly preserved.
        """
        self._require_connection(conn)
        src, dst = conn.from_node, conn.to_node
        if self.enforce_acyclic:
            position = dst.index
        else:
            position = max(src.index, dst.index)
        hidden = self.add_node(Node(NodeRole.HIDDEN, activation=activation), position)
        self.remove_connections([conn])
        self.connect(src, hidden, 1.0)
        self.connect(hidden, dst, conn.weight, gater=conn.gater)
        return hidden

    # ------------------------------------------------------------------ #
    # Edges
    # ------------------------------------------------------------------ #

    def connect(
        self,
        from_node: Node,
        to_node: Node,
        weight: float | None = None,
        *,
        enabled: bool = True,
        gater: Node | None = None,
        rng: random.Random | None = None,
    ) -> Connection:
        self._require_node(from_node)
        self._require_node(to_node)
        if gater is not None:
            self._require_node(gater)
        if to_node.role is NodeRole.INPUT:
            raise TopologyError("Input nodes cannot receive connections")
        if self.enforce_acyclic and from_node.index >= to_node.index:
            raise TopologyError(
                f"Edge {from_node.index}->{to_node.index} violates topological order"
            )
        if self.get_connection(from_node, to_node) is not None:
            raise TopologyError(
                f"Duplicate edge {from_node.index}->{to_node.index}"
            )
        if weight is None:
            weight = (rng or random).uniform(-1.0, 1.0)

        conn = Connection(from_node, to_node, float(weight), enabled=enabled, gater=gater)
        self.connections.append(conn)
        self.topology_dirty = True
        return conn

    def disconnect(self, from_node: Node, to_node: Node) -> bool:
        conn = self.get_connection(from_node, to_node)
        if conn is None:
            return False
        self.remove_connections([conn])
        return True

    def remove_connections(self, doomed: Iterable[Connection]) -> int:
        """Remove connections by identity; returns how many were removed."""
        ids = {id(c) for c in doomed}
        if not ids:
            return 0
        before = len(self.connections)
        self.connections = [c for c in self.connections if id(c) not in ids]
        removed = before - len(self.connections)
        if removed:
            self.topology_dirty = True
        return removed

    def get_connection(self, from_node: Node, to_node: Node) -> Connection | None:
        for conn in self.connections:
            if conn.from_node is from_node and conn.to_node is to_node:
                return conn
        return None

    def enabled_connections(self) -> list[Connection]:
        return [c for c in self.connections if c.enabled]

    def compact(self) -> int:
        """Drop disabled connections; returns the number removed."""
        return self.remove_connections([c for c in self.connections if not c.enabled])

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    @property
    def input_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.role is NodeRole.INPUT]

    @property
    def output_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.role is NodeRole.OUTPUT]

    @property
    def hidden_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.role is NodeRole.HIDDEN]

    def owns(self, node: Node) -> bool:
        return 0 <= node.index < len(self.nodes) and self.nodes[node.index] is node

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #

    def activate(self, inputs: Sequence[float]) -> list[float]:
        input_nodes = self.input_nodes
        if len(inputs) != len(input_nodes):
            raise GenomeError(
                f"Expected {len(input_nodes)} inputs, got {len(inputs)}"
            )
        if self.topology_dirty:
            self._rebuild_incoming()

        values = iter(inputs)
        for node in self.nodes:
            if node.role is NodeRole.INPUT:
                node.state = float(next(values))
                continue
            total = node.bias
            for conn in self._incoming[node.index]:
                if not conn.enabled:
                    continue
                signal = conn.weight * conn.from_node.state
                if conn.gater is not None:
                    signal *= conn.gater.state
                total += signal
            node.state = resolve_activation(node.activation)(total)
        return [n.state for n in self.nodes if n.role is NodeRole.OUTPUT]

    def reset_state(self) -> None:
        for node in self.nodes:
            node.state = 0.0

    # ------------------------------------------------------------------ #
    # Copy / serialization
    # ------------------------------------------------------------------ #

    def clone(self) -> Genome:
        """Deep copy of nodes and connections under a fresh identity."""
        twin = Genome(enforce_acyclic=self.enforce_acyclic)
        twin.nodes = [
            Node(n.role, bias=n.bias, activation=n.activation, index=n.index)
            for n in self.nodes
        ]
        mapped = twin.nodes
        twin.connections = [
            Connection(
                mapped[c.from_node.index],
                mapped[c.to_node.index],
                c.weight,
                enabled=c.enabled,
                gater=mapped[c.gater.index] if c.gater is not None else None,
                total_delta_weight=c.total_delta_weight,
                previous_delta_weight=c.previous_delta_weight,
            )
            for c in self.connections
        ]
        twin.score = self.score
        twin.species = self.species
        twin.parents = list(self.parents)
        twin.depth = self.depth
        twin.plasticity = self.plasticity.copy()
        twin.decision_trace = [list(v) for v in self.decision_trace]
        return twin

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "enforce_acyclic": self.enforce_acyclic,
            "score": self.score,
            "species": self.species,
            "parents": list(self.parents),
            "depth": self.depth,
            "nodes": [
                {"role": n.role.value, "bias": n.bias, "activation": n.activation}
                for n in self.nodes
            ],
            "connections": [
                {
                    "from": c.from_node.index,
                    "to": c.to_node.index,
                    "weight": c.weight,
                    "enabled": c.enabled,
                    "gater": c.gater.index if c.gater is not None else None,
                }
                for c in self.connections
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Genome:
        try:
            genome = cls(
                enforce_acyclic=data.get("enforce_acyclic", True),
                genome_id=data.get("id"),
            )
            for raw in data["nodes"]:
                genome.add_node(
                    Node(
                        NodeRole(raw["role"]),
                        bias=float(raw.get("bias", 0.0)),
                        activation=raw.get("activation", "sigmoid"),
                    )
                )
            nodes = genome.nodes
            for raw in data["connections"]:
                gater = raw.get("gater")
                genome.connect(
                    nodes[raw["from"]],
                    nodes[raw["to"]],
                    float(raw["weight"]),
                    enabled=raw.get("enabled", True),
                    gater=nodes[gater] if gater is not None else None,
                )
        except (KeyError, IndexError, ValueError, TypeError) as exc:
            raise GenomeError(f"Malformed genome payload: {exc}") from exc
        genome.score = data.get("score")
        genome.species = data.get("species")
        genome.parents = list(data.get("parents", []))
        genome.depth = int(data.get("depth", 0))
        return genome

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _reindex(self) -> None:
        for i, node in enumerate(self.nodes):
            node.index = i

    def _rebuild_incoming(self) -> None:
        incoming: list[list[Connection]] = [[] for _ in self.nodes]
        for conn in self.connections:
            incoming[conn.to_node.index].append(conn)
        self._incoming = incoming
        self.topology_dirty = False

    def _require_node(self, node: Node) -> None:
        if not self.owns(node):
            raise TopologyError("Node does not belong to this genome")

    def _require_connection(self, conn: Connection) -> None:
        if not any(c is conn for c in self.connections):
            raise TopologyError("Connection does not belong to this genome")

    def __repr__(self) -> str:
        return (
            f"Genome(id={self.id[:8]}, nodes={len(self.nodes)}, "
            f"connections={len(self.connections)}, score={self.score})"
        )
