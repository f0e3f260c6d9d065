"""
Category Registry

DESIGN DECISION: Deleting a category detaches it. Transactions and
installment plans that used it keep existing with no category; budgets
defined on it are removed, since a budget cannot exist without one.

System-seeded default categories cannot be edited or deleted.
"""

from functools import partial
from typing import Optional
from uuid import UUID

from ledger.audit import AuditLogger
from ledger.errors import ConflictError, NotFoundError
from ledger.models.audit import AuditEventType
from ledger.models.records import (
    Budget,
    Category,
    CategoryType,
    InstallmentGroup,
    Transaction,
)
from ledger.models.requests import CategoryRequest
from ledger.services.storage import (
    LedgerStorageInterface,
    group_lock,
    transaction_lock,
)
from ledger.validation import LedgerValidator


# (name, type, color, icon)
DEFAULT_CATEGORIES = [
    ("Salary", CategoryType.INCOME, "#22C55E", "briefcase"),
    ("Investments", CategoryType.INCOME, "#14B8A6", "trending-up"),
    ("Other Income", CategoryType.INCOME, "#84CC16", "plus-circle"),
    ("Food", CategoryType.EXPENSE, "#F97316", "utensils"),
    ("Housing", CategoryType.EXPENSE, "#6366F1", "home"),
    ("Transport", CategoryType.EXPENSE, "#0EA5E9", "car"),
    ("Health", CategoryType.EXPENSE, "#EF4444", "heart-pulse"),
    ("Education", CategoryType.EXPENSE, "#A855F7", "graduation-cap"),
    ("Leisure", CategoryType.EXPENSE, "#EC4899", "gamepad-2"),
    ("Other Expenses", CategoryType.EXPENSE, "#64748B", "circle"),
]


class CategoryRegistry:
    """CRUD for categories with protected defaults."""
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: LedgerValidator,
        audit: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator
        self._audit = audit or AuditLogger()
    
    async def _require(self, category_id: UUID) -> Category:
        category = await self._storage.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category
    
    def _require_editable(self, category: Category, action: str) -> None:
        if category.is_default:
            raise ConflictError(f"Default categories cannot be {action}")
    
    async def _log(self, event_type: AuditEventType, category: Category, description: str) -> None:
        await self._storage.after_commit(partial(
            self._audit.log_record_changed,
            event_type,
            Category.kind,
            category.id,
            description,
        ))
    
    async def seed_defaults(self) -> int:
        """
        Create the default categories that do not exist yet.
        
        Returns:
            Number of categories created
        """
        existing = {
            (c.name, c.type)
            for c in await self._storage.list_records(Category, lambda c: c.is_default)
        }
        created = 0
        async with self._storage.unit_of_work():
            for name, type_, color, icon in DEFAULT_CATEGORIES:
                if (name, type_) in existing:
                    continue
                await self._storage.save(Category(
                    name=name, type=type_, color=color, icon=icon, is_default=True,
                ))
                created += 1
        return created
    
    async def create(self, request: CategoryRequest) -> Category:
        self._validator.ensure(
            await self._validator.validate_category(request), "create_category"
        )
        category = Category(**request.model_dump(), is_default=False)
        async with self._storage.unit_of_work():
            await self._storage.save(category)
            await self._log(AuditEventType.CATEGORY_CREATED, category, f"Category created: {category.name}")
        return category
    
    async def update(self, category_id: UUID, request: CategoryRequest) -> Category:
        """
        Raises:
            NotFoundError: Unknown category
            ConflictError: Category is a default one
            ValidationError: Invalid payload
        """
        category = await self._require(category_id)
        self._require_editable(category, "edited")
        self._validator.ensure(
            await self._validator.validate_category(request), "update_category"
        )
        
        updated = category.model_copy(update=request.model_dump())
        async with self._storage.unit_of_work():
            await self._storage.save(updated)
            await self._log(AuditEventType.CATEGORY_UPDATED, updated, f"Category updated: {updated.name}")
        return updated
    
    async def delete(self, category_id: UUID) -> None:
        """
        Delete a category, detaching everything that used it.
        
        Raises:
            NotFoundError: Unknown category
            ConflictError: Category is a default one
        """
        category = await self._require(category_id)
        self._require_editable(category, "deleted")
        
        transactions = await self._storage.list_transactions(category_id=category_id)
        groups = await self._storage.list_records(
            InstallmentGroup, lambda g: g.category_id == category_id
        )
        keys = [transaction_lock(tx.id) for tx in transactions]
        keys += [group_lock(group.id) for group in groups]
        
        async with self._storage.unit_of_work(keys):
            for tx in transactions:
                tx = await self._storage.get(Transaction, tx.id)
                if tx is not None and tx.category_id == category_id:
                    tx.category_id = None
                    await self._storage.save(tx)
            
            for group in groups:
                group = await self._storage.get(InstallmentGroup, group.id)
                if group is not None and group.category_id == category_id:
                    group.category_id = None
                    await self._storage.save(group)
            
            budgets = await self._storage.list_records(
                Budget, lambda b: b.category_id == category_id
            )
            for budget in budgets:
                await self._storage.delete(Budget, budget.id)
            
            await self._storage.delete(Category, category_id)
            await self._log(
                AuditEventType.CATEGORY_DELETED,
                category,
                f"Category deleted: {category.name} "
                f"({len(transactions)} transactions detached, {len(budgets)} budgets removed)",
            )
    
    async def get(self, category_id: UUID) -> Category:
        return await self._require(category_id)
    
    async def list_categories(self) -> list[Category]:
        """Every category, defaults first."""
        categories = await self._storage.list_records(Category)
        return sorted(categories, key=lambda c: (not c.is_default, c.name.lower()))
