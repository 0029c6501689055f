"""
InventoryEngine - the external interface of the inventory kernel.

The engine ties together:
- UnitOfWork: transaction boundary, retry, cancellation, event delivery
- OrderService / ProcurementService: document workflows
- AllocationService: reservations
- MovementService: adjustments and transfers
- StockSelector: availability, reconciliation and reporting reads

Every mutating method runs in exactly one unit of work and returns an
``OperationResult`` holding a frozen DTO and the domain events committed
with it.  Failures raise the typed errors in ``inventory_kernel.exceptions``
after rolling back; no partial state survives and no events are delivered.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from inventory_kernel.config import EngineConfig, load_config
from inventory_kernel.db.engine import get_session_factory, init_engine_from_url
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.cancellation import CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    AdjustmentDTO,
    AdjustmentReasonCode,
    GoodsReceiptDTO,
    LocationDTO,
    LowStockItem,
    OperationResult,
    OrderDTO,
    OrderLineSpec,
    PurchaseOrderDTO,
    PurchaseOrderLineSpec,
    ReceiptLineSpec,
    ReconciliationReport,
    ReleaseResult,
    ReservationDTO,
    StockLevel,
    TransferDTO,
    TransferLineSpec,
    VariantDTO,
    WarehouseDTO,
    ZoneType,
)
from inventory_kernel.domain.events import EventBuffer
from inventory_kernel.domain.quantities import to_quantity
from inventory_kernel.exceptions import WarehouseNotFoundError
from inventory_kernel.logging_config import configure_logging, get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.warehouse import Location, Warehouse
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.order_service import OrderService
from inventory_kernel.services.procurement_service import ProcurementService
from inventory_kernel.services.unit_of_work import UnitOfWork, WorkContext

logger = get_logger("orchestrator")

T = TypeVar("T")


class InventoryEngine:
    """
    Facade over the kernel services.

    Usage:
        engine = InventoryEngine.from_config(load_config("inventory.yaml"))
        result = engine.create_order(customer_id, warehouse_id, actor_id=actor)
        engine.confirm_order(result.value.id, actor_id=actor)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._config = config or EngineConfig.with_defaults()
        self._clock = clock or SystemClock()
        if session_factory is None:
            init_engine_from_url(
                self._config.database_url,
                echo=self._config.echo,
                busy_timeout=self._config.sqlite_busy_timeout_seconds,
            )
            session_factory = get_session_factory()
        register_immutability_listeners()
        self._session_factory = session_factory
        self._uow = UnitOfWork(session_factory, self._clock, self._config)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig | str | Path | None = None,
        clock: Clock | None = None,
    ) -> "InventoryEngine":
        """Build an engine (and its database engine) from config or a YAML path."""
        if not isinstance(config, EngineConfig):
            config = load_config(config)
        configure_logging(level=config.log_level)
        return cls(clock=clock, config=config)

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        fn: Callable[[WorkContext], T],
        actor_id: UUID,
        cancellation: CancellationToken | None,
    ) -> OperationResult[T]:
        value, events = self._uow.run(
            operation, fn, actor_id=actor_id, cancellation=cancellation,
        )
        return OperationResult(value=value, events=events)

    def _read(self, fn: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return fn(session)
        finally:
            session.rollback()
            session.close()

    # ------------------------------------------------------------------
    # Setup (master data)
    # ------------------------------------------------------------------

    def register_warehouse(
        self,
        code: str,
        name: str,
        *,
        actor_id: UUID,
        address: str | None = None,
        is_nettable: bool = True,
    ) -> OperationResult[WarehouseDTO]:
        def op(ctx: WorkContext) -> WarehouseDTO:
            warehouse = Warehouse(
                code=code,
                name=name,
                address=address,
                is_nettable=is_nettable,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            ctx.session.add(warehouse)
            ctx.session.flush()
            logger.info(
                "warehouse_registered",
                extra={"warehouse_id": str(warehouse.id), "code": code},
            )
            return warehouse.to_dto()

        return self._run("register_warehouse", op, actor_id, None)

    def register_location(
        self,
        warehouse_id: UUID,
        code: str,
        zone_type: ZoneType | str = ZoneType.BULK_STORAGE,
        *,
        actor_id: UUID,
    ) -> OperationResult[LocationDTO]:
        zone = ZoneType(zone_type)

        def op(ctx: WorkContext) -> LocationDTO:
            warehouse = ctx.session.get(Warehouse, warehouse_id)
            if warehouse is None or warehouse.is_deleted:
                raise WarehouseNotFoundError(str(warehouse_id))
            location = Location(
                warehouse_id=warehouse_id,
                code=code,
                zone_type=zone.value,
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            ctx.session.add(location)
            ctx.session.flush()
            logger.info(
                "location_registered",
                extra={
                    "location_id": str(location.id),
                    "warehouse_id": str(warehouse_id),
                    "code": code,
                    "zone_type": zone.value,
                },
            )
            return location.to_dto()

        return self._run("register_location", op, actor_id, None)

    def register_variant(
        self,
        sku: str,
        *,
        actor_id: UUID,
        name: str = "",
        barcode: str | None = None,
        cost_price: Decimal | int | str = Decimal("0"),
        sales_price: Decimal | int | str = Decimal("0"),
        reorder_point: Decimal | int | str = Decimal("0"),
        reorder_quantity: Decimal | int | str = Decimal("0"),
    ) -> OperationResult[VariantDTO]:
        def op(ctx: WorkContext) -> VariantDTO:
            variant = ProductVariant(
                sku=sku,
                name=name,
                barcode=barcode,
                cost_price=to_quantity(cost_price),
                sales_price=to_quantity(sales_price),
                reorder_point=to_quantity(reorder_point),
                reorder_quantity=to_quantity(reorder_quantity),
                is_active=True,
                created_by_id=ctx.actor_id,
            )
            ctx.session.add(variant)
            ctx.session.flush()
            logger.info(
                "variant_registered",
                extra={"variant_id": str(variant.id), "sku": sku},
            )
            return variant.to_dto()

        return self._run("register_variant", op, actor_id, None)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        customer_id: UUID,
        warehouse_id: UUID,
        *,
        actor_id: UUID,
        lines: Iterable[OrderLineSpec] = (),
        notes: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        specs = tuple(lines)
        return self._run(
            "create_order",
            lambda ctx: ctx.orders.create_order(
                customer_id, warehouse_id, actor_id=ctx.actor_id, lines=specs, notes=notes,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    def add_order_line(
        self,
        order_id: UUID,
        spec: OrderLineSpec,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._run(
            "add_order_line",
            lambda ctx: ctx.orders.add_line(order_id, spec, actor_id=ctx.actor_id).to_dto(),
            actor_id,
            cancellation,
        )

    def _order_action(
        self,
        action: str,
        order_id: UUID,
        actor_id: UUID,
        cancellation: CancellationToken | None,
    ) -> OperationResult[OrderDTO]:
        return self._run(
            f"{action}_order",
            lambda ctx: getattr(ctx.orders, action)(order_id, actor_id=ctx.actor_id).to_dto(),
            actor_id,
            cancellation,
        )

    def confirm_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._order_action("confirm", order_id, actor_id, cancellation)

    def allocate_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        """Reserve stock for every line; all-or-nothing."""
        return self._order_action("allocate", order_id, actor_id, cancellation)

    def pick_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._order_action("pick", order_id, actor_id, cancellation)

    def pack_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._order_action("pack", order_id, actor_id, cancellation)

    def ship_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        """Ship a packed order; its reservation is consumed from on-hand."""
        return self._order_action("ship", order_id, actor_id, cancellation)

    def invoice_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._order_action("invoice", order_id, actor_id, cancellation)

    def cancel_order(
        self, order_id: UUID, *, actor_id: UUID, cancellation: CancellationToken | None = None,
    ) -> OperationResult[OrderDTO]:
        return self._order_action("cancel", order_id, actor_id, cancellation)

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def allocate(
        self,
        variant_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal | int | str,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[ReservationDTO]:
        """Ad-hoc reservation not tied to an order."""
        return self._run(
            "allocate",
            lambda ctx: ctx.allocation.allocate(
                variant_id,
                warehouse_id,
                to_quantity(quantity),
                actor_id=ctx.actor_id,
                reference_type=reference_type,
                reference_id=reference_id,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    def release(
        self,
        reservation_id: UUID,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[ReleaseResult]:
        return self._run(
            "release",
            lambda ctx: ctx.allocation.release(reservation_id, actor_id=ctx.actor_id),
            actor_id,
            cancellation,
        )

    # ------------------------------------------------------------------
    # Procurement
    # ------------------------------------------------------------------

    def create_purchase_order(
        self,
        vendor_id: UUID,
        warehouse_id: UUID,
        *,
        actor_id: UUID,
        lines: Iterable[PurchaseOrderLineSpec] = (),
        expected_delivery_date: date | None = None,
        notes: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        specs = tuple(lines)
        return self._run(
            "create_purchase_order",
            lambda ctx: ctx.procurement.create_purchase_order(
                vendor_id,
                warehouse_id,
                actor_id=ctx.actor_id,
                lines=specs,
                expected_delivery_date=expected_delivery_date,
                notes=notes,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    def add_purchase_order_line(
        self,
        purchase_order_id: UUID,
        spec: PurchaseOrderLineSpec,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._run(
            "add_purchase_order_line",
            lambda ctx: ctx.procurement.add_line(
                purchase_order_id, spec, actor_id=ctx.actor_id,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    def _purchase_order_action(
        self,
        action: str,
        purchase_order_id: UUID,
        actor_id: UUID,
        cancellation: CancellationToken | None,
        **kwargs,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._run(
            f"{action}_purchase_order",
            lambda ctx: getattr(ctx.procurement, action)(
                purchase_order_id, actor_id=ctx.actor_id, **kwargs,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    def submit_purchase_order(
        self,
        purchase_order_id: UUID,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._purchase_order_action("submit", purchase_order_id, actor_id, cancellation)

    def request_approval(
        self,
        purchase_order_id: UUID,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._purchase_order_action(
            "request_approval", purchase_order_id, actor_id, cancellation,
        )

    def approve_purchase_order(
        self,
        purchase_order_id: UUID,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._purchase_order_action("approve", purchase_order_id, actor_id, cancellation)

    def reject_purchase_order(
        self,
        purchase_order_id: UUID,
        *,
        actor_id: UUID,
        reason: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._purchase_order_action(
            "reject", purchase_order_id, actor_id, cancellation, reason=reason,
        )

    def cancel_purchase_order(
        self,
        purchase_order_id: UUID,
        *,
        actor_id: UUID,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[PurchaseOrderDTO]:
        return self._purchase_order_action("cancel", purchase_order_id, actor_id, cancellation)

    def receive_goods(
        self,
        purchase_order_id: UUID,
        lines: Iterable[ReceiptLineSpec],
        *,
        received_by: str,
        actor_id: UUID,
        delivery_note_number: str | None = None,
        notes: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[GoodsReceiptDTO]:
        specs = tuple(lines)

        def op(ctx: WorkContext) -> GoodsReceiptDTO:
            grn, po = ctx.procurement.receive_goods(
                purchase_order_id,
                specs,
                received_by=received_by,
                actor_id=ctx.actor_id,
                delivery_note_number=delivery_note_number,
                notes=notes,
            )
            return grn.to_dto(po.status)

        return self._run("receive_goods", op, actor_id, cancellation)

    # ------------------------------------------------------------------
    # Adjustments and transfers
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        variant_id: UUID,
        location_id: UUID,
        delta: Decimal | int | str,
        reason_code: AdjustmentReasonCode | str,
        *,
        actor_id: UUID,
        notes: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[AdjustmentDTO]:
        def op(ctx: WorkContext) -> AdjustmentDTO:
            adjustment, snapshot = ctx.movements.apply_adjustment(
                variant_id,
                location_id,
                to_quantity(delta),
                reason_code,
                actor_id=ctx.actor_id,
                notes=notes,
            )
            return adjustment.to_dto(snapshot.quantity_on_hand)

        return self._run("apply_adjustment", op, actor_id, cancellation)

    def apply_transfer(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        lines: Iterable[TransferLineSpec],
        *,
        actor_id: UUID,
        notes: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> OperationResult[TransferDTO]:
        specs = tuple(lines)
        return self._run(
            "apply_transfer",
            lambda ctx: ctx.movements.apply_transfer(
                from_warehouse_id, to_warehouse_id, specs, actor_id=ctx.actor_id, notes=notes,
            ).to_dto(),
            actor_id,
            cancellation,
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def rebuild_snapshots(self, *, actor_id: UUID) -> OperationResult[int]:
        """Recompute every snapshot from the ledger; returns rows fixed."""
        return self._run(
            "rebuild_snapshots", lambda ctx: ctx.ledger.rebuild_snapshots(), actor_id, None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_available_quantity(
        self,
        variant_id: UUID,
        location_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        *,
        active_only: bool = True,
    ) -> Decimal:
        return self._read(
            lambda s: StockSelector(s).get_available_quantity(
                variant_id, location_id, warehouse_id, active_only,
            )
        )

    def stock_levels(
        self,
        variant_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        *,
        active_only: bool = True,
    ) -> list[StockLevel]:
        """Snapshot rows (on hand, allocated) ordered by variant then location."""
        return self._read(
            lambda s: StockSelector(s).list_snapshots(variant_id, warehouse_id, active_only)
        )

    def get_reservation(self, reservation_id: UUID) -> ReservationDTO:
        return self._read(lambda s: StockSelector(s).get_reservation(reservation_id))

    def get_order(self, order_id: UUID, *, active_only: bool = True) -> OrderDTO:
        return self._read(
            lambda s: OrderService(s, self._clock, events=EventBuffer())
            .get_order(order_id, active_only=active_only)
            .to_dto()
        )

    def get_purchase_order(
        self, purchase_order_id: UUID, *, active_only: bool = True,
    ) -> PurchaseOrderDTO:
        return self._read(
            lambda s: ProcurementService(s, self._clock, events=EventBuffer())
            .get_purchase_order(purchase_order_id, active_only=active_only)
            .to_dto()
        )

    def verify_reconciliation(
        self, variant_id: UUID | None = None, location_id: UUID | None = None,
    ) -> ReconciliationReport:
        return self._read(
            lambda s: StockSelector(s).verify_reconciliation(variant_id, location_id)
        )

    def low_stock(self, warehouse_id: UUID | None = None) -> list[LowStockItem]:
        return self._read(lambda s: StockSelector(s).low_stock(warehouse_id))
