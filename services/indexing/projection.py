"""Projection of a canonical document into the flat record stored in a search index."""

from typing import Any

from shared.models.document import Document

# keys owned by the projection itself; metadata can never overwrite them
RESERVED_KEYS = ("id", "title", "content", "_hash")


def flatten_metadata(metadata: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys, e.g. {"a": {"b": 1}} -> {"a.b": 1}.

    Lists and scalars are kept as they are.
    """
    flat: dict[str, Any] = {}
    for key, value in metadata.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_metadata(value, prefix=f"{full_key}."))
        else:
            flat[full_key] = value
    return flat


def build_projection(document: Document) -> dict[str, Any]:
    """Build the index record of a document.

    Args:
        document (Document): The canonical store record.

    Returns:
        dict[str, Any]: id, title, content as text, the flattened metadata and
            the ``_hash`` of the record.

    Raises:
        TypeError / ValueError: If the content or metadata cannot be serialised.
    """
    projection = {
        key: value
        for key, value in flatten_metadata(document.metadata or {}).items()
        if key not in RESERVED_KEYS
    }
    projection.update(
        {
            "id": document.id,
            "title": document.title,
            "content": document.content_text(),
            "_hash": document.compute_hash(),
        }
    )
    return projection
