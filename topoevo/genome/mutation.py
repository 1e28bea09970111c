"""Per-genome mutation operators.

Every operator has the signature ``op(genome, rng, options)`` where *options*
exposes ``mutation_rate`` and ``mutation_amount``. Operators mutate in place
and silently do nothing when the genome offers no valid site.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import random
from typing import Any

from topoevo.exceptions import MutationError
from topoevo.genome.model import Genome, NodeRole

MutationOperator = Callable[[Genome, random.Random, Any], None]

_ADD_CONNECTION_ATTEMPTS = 20


def mutate_weight(genome: Genome, rng: random.Random, options: Any) -> None:
    conns = genome.enabled_connections()
    if not conns:
        return
    amount = options.mutation_amount
    touched = False
    for conn in conns:
        if rng.random() < options.mutation_rate:
            conn.weight += rng.uniform(-amount, amount)
            touched = True
    if not touched:
        rng.choice(conns).weight += rng.uniform(-amount, amount)


def mutate_bias(genome: Genome, rng: random.Random, options: Any) -> None:
    nodes = [n for n in genome.nodes if n.role is not NodeRole.INPUT]
    if not nodes:
        return
    amount = options.mutation_amount
    touched = False
    for node in nodes:
        if rng.random() < options.mutation_rate:
            node.bias += rng.uniform(-amount, amount)
            touched = True
    if not touched:
        rng.choice(nodes).bias += rng.uniform(-amount, amount)


def add_connection(genome: Genome, rng: random.Random, options: Any) -> None:
    sources = genome.nodes
    targets = [n for n in genome.nodes if n.role is not NodeRole.INPUT]
    if not targets:
        return
    for _ in range(_ADD_CONNECTION_ATTEMPTS):
        src, dst = rng.choice(sources), rng.choice(targets)
        if genome.enforce_acyclic and src.index >= dst.index:
            continue
        if genome.get_connection(src, dst) is not None:
            continue
        genome.connect(src, dst, rng=rng)
        return


def remove_connection(genome: Genome, rng: random.Random, options: Any) -> None:
    if len(genome.connections) <= 1:
        return
    genome.remove_connections([rng.choice(genome.connections)])


def add_node(genome: Genome, rng: random.Random, options: Any) -> None:
    conns = genome.enabled_connections()
    if conns:
        genome.split_connection(rng.choice(conns))


def toggle_connection(genome: Genome, rng: random.Random, options: Any) -> None:
    if not genome.connections:
        return
    conn = rng.choice(genome.connections)
    if conn.enabled and len(genome.enabled_connections()) <= 1:
        return
    conn.enabled = not conn.enabled


MUTATIONS: dict[str, MutationOperator] = {
    "mutate_weight": mutate_weight,
    "mutate_bias": mutate_bias,
    "add_connection": add_connection,
    "remove_connection": remove_connection,
    "add_node": add_node,
    "toggle_connection": toggle_connection,
}


def resolve_mutations(names: Sequence[str]) -> list[MutationOperator]:
    """Map operator names (as written in config files) to callables."""
    unknown = [n for n in names if n not in MUTATIONS]
    if unknown:
        raise MutationError(
            f"Unknown mutation operator(s) {unknown}. Available: {sorted(MUTATIONS)}"
        )
    return [MUTATIONS[n] for n in names]
