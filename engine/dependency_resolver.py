"""
engine/dependency_resolver.py -- Which entities reference a given entity.

The rules are deliberately heuristic rather than a reference-integrity
engine:

    character -> chapter    the chapter's flattened text contains the
                            character's name (case-insensitive substring)
    character -> character  the other character has a relationship edge
                            targeting this character
    chapter   -> character  inverse of the first rule
    plot      -> chapter/character
                            the ids stored on the plot point

Substring matching misses nicknames and pronouns and will happily match
"Al" inside "Always".  A renamed character is matched by its *new* name
only; nothing rescans prose for the old one.

``find_dependencies`` returns a flat list in a deterministic order
(chapters in list order, then characters in list order); duplicates are
possible and callers deduplicate if they care.  Everything here is a pure
function of the Book passed in.

Usage:
    from engine.dependency_resolver import find_dependencies

    ids = find_dependencies(book, EntityType.CHARACTER, "character_1")
    graph = build_reference_graph(book)
"""

from __future__ import annotations

import logging

try:
    import networkx as nx
except ImportError:
    raise ImportError(
        "The 'networkx' package is required but not installed. "
        "Install it with: pip install networkx"
    )

from engine.models.book import Book, Chapter, Character
from engine.models.context import EntityType
from engine.models.validators import resolve_relationships

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Text heuristics
# ---------------------------------------------------------------------------

def mentions(chapter: Chapter, name: str) -> bool:
    """True if *name* occurs in the chapter's text, ignoring case.

    A blank name never matches.
    """
    needle = (name or "").strip().lower()
    if not needle:
        return False
    return needle in chapter.flattened_text().lower()


def chapters_mentioning(book: Book, character: Character) -> list[str]:
    return [ch.id for ch in book.chapters if mentions(ch, character.name)]


def characters_in_chapter(book: Book, chapter: Chapter) -> list[str]:
    return [c.id for c in book.characters if mentions(chapter, c.name)]


def characters_related_to(book: Book, character_id: str) -> list[str]:
    return [
        c.id for c in book.characters
        if any(rel.target_character_id == character_id for rel in c.relationships)
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def find_dependencies(book: Book, entity_type: EntityType | str, entity_id: str) -> list[str]:
    """Return ids of entities in *book* that depend on the given entity.

    Unknown ids and entity types without a rule yield ``[]``.
    """
    entity_type = EntityType(entity_type)
    dependencies: list[str] = []

    if entity_type is EntityType.CHARACTER:
        character = book.get_character(entity_id)
        if character is not None:
            dependencies.extend(chapters_mentioning(book, character))
        dependencies.extend(characters_related_to(book, entity_id))

    elif entity_type is EntityType.CHAPTER:
        chapter = book.get_chapter(entity_id)
        if chapter is not None:
            dependencies.extend(characters_in_chapter(book, chapter))

    elif entity_type is EntityType.PLOT:
        plot = book.get_plot_point(entity_id)
        if plot is not None:
            if plot.chapter_id:
                dependencies.append(plot.chapter_id)
            dependencies.extend(plot.character_ids)

    return dependencies


def plot_points_for_chapter(book: Book, chapter_id: str) -> list[str]:
    """Ids of plot points whose ``chapter_id`` is *chapter_id*."""
    return [p.id for p in book.plot_points if p.chapter_id == chapter_id]


# ---------------------------------------------------------------------------
# Whole-book reference graph
# ---------------------------------------------------------------------------

def build_reference_graph(book: Book) -> nx.DiGraph:
    """Build a directed graph of every reference in *book*.

    Nodes are entity ids with ``entity_type`` and ``name`` attributes.  An
    edge ``u -> v`` means *v depends on u* and carries a ``relation``
    attribute: ``"mention"``, ``"relationship"`` or ``"reference"``.
    Edges whose endpoint is not an entity of the book are skipped.
    """
    graph = nx.DiGraph()

    for character in book.characters:
        graph.add_node(character.id, entity_type=EntityType.CHARACTER.value, name=character.name)
    for chapter in book.chapters:
        graph.add_node(chapter.id, entity_type=EntityType.CHAPTER.value, name=chapter.title)
    for plot in book.plot_points:
        graph.add_node(plot.id, entity_type=EntityType.PLOT.value, name=plot.title)

    for character in book.characters:
        for chapter_id in chapters_mentioning(book, character):
            graph.add_edge(character.id, chapter_id, relation="mention")
            graph.add_edge(chapter_id, character.id, relation="mention")
        for rel in resolve_relationships(character, book):
            graph.add_edge(rel.target_character_id, character.id, relation="relationship")

    for plot in book.plot_points:
        targets = ([plot.chapter_id] if plot.chapter_id else []) + list(plot.character_ids)
        for target in targets:
            if target in graph:
                graph.add_edge(plot.id, target, relation="reference")

    logger.debug(
        "Reference graph for %s: %d nodes, %d edges",
        book.id, graph.number_of_nodes(), graph.number_of_edges(),
    )
    return graph


def dependency_adjacency(book: Book) -> dict[str, dict[str, list[str]]]:
    """Adjacency lists keyed by entity type, for export.

    Shape: ``{"characters": {id: [dependent ids]}, "chapters": {...},
    "plots": {...}}``.
    """
    graph = build_reference_graph(book)
    result: dict[str, dict[str, list[str]]] = {"characters": {}, "chapters": {}, "plots": {}}
    bucket = {
        EntityType.CHARACTER.value: "characters",
        EntityType.CHAPTER.value: "chapters",
        EntityType.PLOT.value: "plots",
    }
    for node, attrs in graph.nodes(data=True):
        result[bucket[attrs["entity_type"]]][node] = sorted(graph.successors(node))
    return result
