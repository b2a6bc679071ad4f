"""Built-in example models, one per topic of the demo's example picker."""

from typing import Dict, List

SIMPLE = """// Simple example
sig Person {
    friends: set Person
}

// Friendship is symmetric
fact SymmetricFriends {
    all p1, p2: Person | p1 in p2.friends implies p2 in p1.friends
}

// Nobody is their own friend
fact NoSelfFriendship {
    no p: Person | p in p.friends
}

// Find an instance with at least 3 people
run {} for 3
"""

GRAPH = """// Directed graph model
sig Node {
    edges: set Node
}

// No self-loops
fact NoSelfLoops {
    no n: Node | n in n.edges
}

// Graph is connected
pred connected {
    all n1, n2: Node | n1 in n2.*edges
}

// Find a connected graph
run connected for 4
"""

FAMILY = """// Family tree model
abstract sig Person {
    father: lone Man,
    mother: lone Woman
}

sig Man extends Person {}
sig Woman extends Person {}

// No one is their own ancestor
fact NoSelfAncestor {
    no p: Person | p in p.^(father + mother)
}

// Everyone has at most one father and one mother
fact UniqueParents {
    all p: Person | lone p.father and lone p.mother
}

run {} for 5
"""

FILESYSTEM = """// File system model
abstract sig Object {
    parent: lone Dir
}

sig File extends Object {}

sig Dir extends Object {
    contents: set Object
}

// Root directory has no parent
one sig Root extends Dir {} {
    no parent
}

// Contents are children
fact ContentsAreChildren {
    all d: Dir, o: Object | o in d.contents iff d = o.parent
}

// No cycles in directory structure
fact NoCycles {
    no d: Dir | d in d.^parent
}

run {} for 4
"""

EXAMPLES: Dict[str, str] = {
    "simple": SIMPLE,
    "graph": GRAPH,
    "family": FAMILY,
    "filesystem": FILESYSTEM,
}


def example_names() -> List[str]:
    return list(EXAMPLES)


def get_example(name: str) -> str:
    """Source of a built-in example.

    Raises:
        KeyError: If there is no example with that name.
    """
    try:
        return EXAMPLES[name]
    except KeyError:
        raise KeyError(
            f"Unknown example '{name}'; choose one of {', '.join(EXAMPLES)}"
        ) from None
