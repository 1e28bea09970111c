from topoevo.genome.model import Connection, Genome, Node, NodeRole, PlasticityState
from topoevo.genome.mutation import MUTATIONS, MutationOperator, resolve_mutations

__all__ = [
    "Connection",
    "Genome",
    "Node",
    "NodeRole",
    "PlasticityState",
    "MUTATIONS",
    "MutationOperator",
    "resolve_mutations",
]
