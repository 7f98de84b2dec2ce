"""
Category Registry

Income and expense categories, optionally nested. Transaction validation
only needs to know whether a category exists and is Active; the
hierarchy is kept acyclic here so listings can be rendered as a tree.
"""

from typing import Any, Optional

from household_ledger.errors import ConflictError, NotFoundError, ValidationError
from household_ledger.ledger.base import LedgerService
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import (
    Category,
    CategoryCreate,
    CategoryNode,
    CategoryStatus,
    CategoryType,
    CategoryUpdate,
    enum_values,
)
from household_ledger.services.identity import CATEGORY_ID_PREFIX
from household_ledger.validation import parse_request


CATEGORY_TYPES = enum_values(CategoryType)
CATEGORY_STATUSES = enum_values(CategoryStatus)


class CategoryLedger(LedgerService):
    """Category CRUD and hierarchy views for the current owner."""

    async def _active_parent(self, user_id: str, parent_id: str) -> Category:
        parent = await self._read(self._store.get_category, user_id, parent_id)
        if parent is None or not parent.is_active:
            raise NotFoundError("Parent category not found or is not active")
        return parent

    async def _ensure_unique_name(
        self,
        user_id: str,
        name: str,
        category_type: CategoryType,
        exclude_id: Optional[str] = None,
    ) -> None:
        siblings = await self._read_all(self._store.list_categories, user_id, type=category_type.value)
        for category in siblings:
            if category.category_id != exclude_id and category.name.lower() == name.lower():
                raise ConflictError("Category name already exists")

    async def create_category(self, data: Any) -> Category:
        request = parse_request(CategoryCreate, data)
        user = await self._require_user()

        if not request.name or not request.type:
            raise ValidationError("Name and type are required")
        if request.type not in CATEGORY_TYPES:
            raise ValidationError(f"Invalid category type. Must be one of: {', '.join(CATEGORY_TYPES)}")
        if request.status not in CATEGORY_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(CATEGORY_STATUSES)}")

        category_type = CategoryType(request.type)
        if request.parent_category_id:
            await self._active_parent(user.id, request.parent_category_id)
        await self._ensure_unique_name(user.id, request.name, category_type)

        now = self._now()
        category = Category(
            category_id=self._generate_id(CATEGORY_ID_PREFIX),
            user_id=user.id,
            name=request.name,
            type=category_type,
            parent_category_id=request.parent_category_id or None,
            status=CategoryStatus(request.status),
            created_at=now,
            updated_at=now,
        )
        created = await self._store.insert_category(category)

        if self._audit_logger:
            await self._audit_logger.log_category_event(
                AuditEventType.CATEGORY_CREATED, user.id, created.category_id
            )
        return created

    async def list_categories(
        self,
        type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Category]:
        """Categories ordered by name."""
        user = await self._require_user()
        return await self._read_all(self._store.list_categories, user.id, type=type, status=status)

    async def get_category(self, category_id: str) -> Category:
        user = await self._require_user()
        category = await self._read(self._store.get_category, user.id, str(category_id))
        if category is None:
            raise NotFoundError("Category not found")
        return category

    async def update_category(self, category_id: str, updates: Any) -> Category:
        request = parse_request(CategoryUpdate, updates)
        user = await self._require_user()
        category = await self.get_category(category_id)

        fields = request.model_fields_set
        if not fields:
            return category

        changes: dict[str, Any] = {}
        if "name" in fields:
            if not request.name:
                raise ValidationError("Name cannot be empty")
            await self._ensure_unique_name(user.id, request.name, category.type, category.category_id)
            changes["name"] = request.name

        if "status" in fields:
            if request.status not in CATEGORY_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(CATEGORY_STATUSES)}")
            changes["status"] = CategoryStatus(request.status)

        if "parent_category_id" in fields:
            parent_id = request.parent_category_id or None
            if parent_id == category.category_id:
                raise ValidationError("Category cannot be its own parent")
            if parent_id:
                await self._active_parent(user.id, parent_id)
                if parent_id in await self._descendant_ids(user.id, category.category_id):
                    raise ValidationError("Category cannot be moved under its own descendant")
            changes["parent_category_id"] = parent_id

        updated = await self._store.update_category(user.id, category.category_id, changes, self._now())
        if updated is None:
            raise NotFoundError("Category not found")

        if self._audit_logger:
            await self._audit_logger.log_category_event(
                AuditEventType.CATEGORY_UPDATED, user.id, category.category_id, {"fields": sorted(changes)}
            )
        return updated

    async def delete_category(self, category_id: str) -> None:
        """
        Remove a category nothing depends on.

        Raises:
            ConflictError: A live transaction or a subcategory references it
            NotFoundError: No such category for the current owner
        """
        user = await self._require_user()
        category = await self.get_category(category_id)

        if await self._read(self._store.category_has_transactions, user.id, category.category_id):
            raise ConflictError("Cannot delete category with existing transactions")
        if await self._descendant_ids(user.id, category.category_id):
            raise ConflictError("Cannot delete category with subcategories")
        if not await self._store.delete_category(user.id, category.category_id):
            raise NotFoundError("Category not found")

        if self._audit_logger:
            await self._audit_logger.log_category_event(
                AuditEventType.CATEGORY_DELETED, user.id, category.category_id
            )

    async def get_category_descendants(self, category_id: str) -> list[Category]:
        """Every category below the given one, each child followed by its own subtree."""
        user = await self._require_user()
        category = await self.get_category(category_id)
        return await self._descendants(user.id, category.category_id)

    async def build_category_tree(
        self,
        type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[CategoryNode]:
        """
        Nest the filtered categories under their parents.

        A category whose parent is missing from the filtered set is
        returned as a root.
        """
        categories = await self.list_categories(type=type, status=status)
        nodes = {c.category_id: CategoryNode(**c.model_dump()) for c in categories}

        roots: list[CategoryNode] = []
        for category in categories:
            node = nodes[category.category_id]
            parent = nodes.get(category.parent_category_id) if category.parent_category_id else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    async def _descendants(self, user_id: str, category_id: str) -> list[Category]:
        categories = await self._read_all(self._store.list_categories, user_id)
        children: dict[str, list[Category]] = {}
        for category in categories:
            if category.parent_category_id:
                children.setdefault(category.parent_category_id, []).append(category)

        found: list[Category] = []
        seen: set[str] = set()

        def walk(parent_id: str) -> None:
            for child in children.get(parent_id, []):
                if child.category_id not in seen:
                    seen.add(child.category_id)
                    found.append(child)
                    walk(child.category_id)

        walk(category_id)
        return found

    async def _descendant_ids(self, user_id: str, category_id: str) -> set[str]:
        return {c.category_id for c in await self._descendants(user_id, category_id)}
