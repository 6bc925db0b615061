"""
Catalog access over MongoDB collections.

Documents are returned with ``id`` in place of ``_id`` (stored type kept).
``depth`` replaces relationship references by the referenced documents, and
product reads/writes run the stock hooks in ``storefront.hooks``.
"""
from typing import Any, Dict, List, Optional, Union

import structlog
from pymongo.database import Database

from storefront import hooks, ids
from storefront.database import create_document, get_database, now_utc
from storefront.errors import ClientInputError, ConflictError, NotFoundError, ServerError
from storefront.schemas import PRODUCTS, VARIANT_MAPPINGS, VARIANTS

logger = structlog.get_logger(__name__)


# collection -> {field: target collection}
RELATIONS: Dict[str, Dict[str, str]] = {
    PRODUCTS: {"variant_mappings": VARIANT_MAPPINGS},
    VARIANT_MAPPINGS: {"variant": VARIANTS},
}

# Only writable with override_access.
PROTECTED_FIELDS: Dict[str, set] = {
    PRODUCTS: {"total_stock"},
    VARIANT_MAPPINGS: {"quantity"},
}


def _to_doc(raw: dict) -> dict:
    doc = dict(raw)
    if "_id" in doc:
        doc["id"] = doc.pop("_id")
    return doc


def _sort_spec(sort: Union[str, list, None]):
    if not sort:
        return None
    if isinstance(sort, list):
        return sort
    if sort.startswith("-"):
        return [(sort[1:], -1)]
    return [(sort, 1)]


class Catalog:
    def __init__(self, db: Database):
        self.db = db

    def find(
        self,
        collection: str,
        where: Optional[dict] = None,
        depth: int = 0,
        limit: int = 10,
        page: int = 1,
        sort: Union[str, list, None] = None,
        select: Optional[Dict[str, bool]] = None,
        run_hooks: bool = True,
    ) -> dict:
        query = where or {}
        projection = {field: 1 for field, wanted in select.items() if wanted} if select else None

        cursor = self.db[collection].find(query, projection)
        sort_spec = _sort_spec(sort)
        if sort_spec:
            cursor = cursor.sort(sort_spec)
        if limit:
            cursor = cursor.skip((max(page, 1) - 1) * limit).limit(limit)

        docs = [_to_doc(raw) for raw in cursor]
        if depth > 0:
            self._populate(collection, docs, depth)
        if run_hooks and collection == PRODUCTS:
            for doc in docs:
                hooks.after_read(doc, self)

        return {
            "docs": docs,
            "total": self.db[collection].count_documents(query),
            "page": page,
            "limit": limit,
        }

    def find_by_id(self, collection: str, id: Any, depth: int = 0, run_hooks: bool = True) -> Optional[dict]:
        result = self.find(collection, ids.id_filter([id]), depth=depth, limit=1, run_hooks=run_hooks)
        return result["docs"][0] if result["docs"] else None

    def find_by_ids(self, collection: str, values: List[Any], depth: int = 0, limit: int = 1000) -> List[dict]:
        if not values:
            return []
        return self.find(collection, ids.id_filter(values), depth=depth, limit=limit)["docs"]

    def _populate(self, collection: str, docs: List[dict], depth: int) -> None:
        for field, target in RELATIONS.get(collection, {}).items():
            refs = []
            for doc in docs:
                value = doc.get(field)
                if isinstance(value, list):
                    refs.extend(v for v in value if not isinstance(v, dict))
                elif value is not None and not isinstance(value, dict):
                    refs.append(value)
            if not refs:
                continue

            related = self.find_by_ids(target, refs, depth=depth - 1, limit=len(refs))
            by_id = {ids.normalize(item): item for item in related}

            def resolve(ref):
                if isinstance(ref, dict):
                    return ref
                # Unresolvable references stay bare.
                return by_id.get(ids.normalize(ref), ref)

            for doc in docs:
                value = doc.get(field)
                if isinstance(value, list):
                    doc[field] = [resolve(v) for v in value]
                elif value is not None:
                    doc[field] = resolve(value)

    def _check_access(self, collection: str, data: dict, override_access: bool) -> None:
        if override_access:
            return
        blocked = PROTECTED_FIELDS.get(collection, set()) & set(data)
        if blocked:
            raise ClientInputError(f"Fields not writable: {', '.join(sorted(blocked))}")

    def create(self, collection: str, data: dict, depth: int = 0, override_access: bool = False) -> dict:
        data = {k: v for k, v in dict(data).items() if k not in ("id", "_id")}
        self._check_access(collection, data, override_access)
        new_id = create_document(self.db, collection, data)
        logger.info("Document created", collection=collection, id=str(new_id))

        if collection == PRODUCTS:
            hooks.after_change(self.find_by_id(collection, new_id, run_hooks=False), self)
        return self.find_by_id(collection, new_id, depth=depth)

    def update(
        self,
        collection: str,
        id: Any,
        data: dict,
        override_access: bool = False,
        expected: Optional[dict] = None,
        depth: int = 0,
    ) -> dict:
        """Set ``data`` on one document.

        ``expected`` is an extra match condition (compare-and-swap); when the
        document exists but no longer matches it, ConflictError is raised.
        """
        data = {k: v for k, v in dict(data).items() if k not in ("id", "_id")}
        self._check_access(collection, data, override_access)
        data["updated_at"] = now_utc()

        id_query = {"_id": ids.to_query_id(id)}
        query = dict(id_query, **(expected or {}))
        result = self.db[collection].update_one(query, {"$set": data})
        if result.matched_count == 0:
            if expected and self.db[collection].count_documents(id_query):
                raise ConflictError(f"{collection} {ids.normalize(id)} was modified concurrently")
            raise NotFoundError(f"{collection} {ids.normalize(id)} not found")

        if collection == PRODUCTS:
            hooks.after_change(self.find_by_id(collection, id, run_hooks=False), self)
        return self.find_by_id(collection, id, depth=depth)

    def push(self, collection: str, id: Any, field: str, value: Any) -> dict:
        """Append ``value`` to a list field, then run write hooks like ``update``."""
        result = self.db[collection].update_one(
            {"_id": ids.to_query_id(id)},
            {"$push": {field: value}, "$set": {"updated_at": now_utc()}},
        )
        if result.matched_count == 0:
            raise NotFoundError(f"{collection} {ids.normalize(id)} not found")
        if collection == PRODUCTS:
            hooks.after_change(self.find_by_id(collection, id, run_hooks=False), self)
        return self.find_by_id(collection, id)


def get_catalog() -> Catalog:
    db = get_database()
    if db is None:
        raise ServerError("Database not configured")
    return Catalog(db)
