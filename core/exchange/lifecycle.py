from __future__ import annotations

"""
Order lifecycle
===============

Allowed status transitions and the rule that turns an exchange report
(requested vs remaining quantity plus explicit flags) into an OrderStatus.

Cancellation is asynchronous: a successful cancel request moves the order to
CANCELING, and only a later status poll observes CANCELED. A poll that finds
the order fully filled while CANCELING ends it in OTHER (fills recorded).
"""

import logging
from typing import Optional

from core.exchange.common import Order, OrderStatus

logger = logging.getLogger(__name__)

EPS = 1e-12

TERMINAL = frozenset({OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.OTHER})

_ALLOWED: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NEW: frozenset(
        {
            OrderStatus.PARTIAL,
            OrderStatus.FILLED,
            OrderStatus.CANCELED,
            OrderStatus.CANCELING,
            OrderStatus.OTHER,
        }
    ),
    OrderStatus.PARTIAL: frozenset(
        {OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.CANCELING, OrderStatus.OTHER}
    ),
    OrderStatus.CANCELING: frozenset({OrderStatus.CANCELED, OrderStatus.OTHER}),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current == new:
        return current not in TERMINAL
    return new in _ALLOWED.get(current, frozenset())


def resolve_status(
    requested: float,
    remaining: Optional[float],
    *,
    live: bool = True,
    cancelled: bool = False,
    cancelling: bool = False,
) -> OrderStatus:
    """Map an exchange report onto the canonical status.

    Explicit cancel flags win over quantities. A fully executed order is
    FILLED even when the exchange no longer reports it as live.
    """
    if cancelled:
        return OrderStatus.CANCELED
    if cancelling:
        return OrderStatus.CANCELING
    if remaining is None:
        return OrderStatus.OTHER
    if abs(remaining) <= EPS:
        return OrderStatus.FILLED
    if not live:
        return OrderStatus.OTHER
    if remaining < 0:
        return OrderStatus.OTHER
    if remaining < requested - EPS:
        return OrderStatus.PARTIAL
    if abs(remaining - requested) <= EPS:
        return OrderStatus.NEW
    return OrderStatus.OTHER


def apply_status(
    order: Order,
    status: OrderStatus,
    *,
    deal_quantity: Optional[float] = None,
    deal_rate: Optional[float] = None,
    raw: Optional[str] = None,
) -> bool:
    """Record a status poll on ``order``. Returns True if the status changed.

    Fills are recorded even when the transition itself is refused.
    """
    if raw is not None:
        order.status_raw = raw
    if deal_quantity is not None:
        if deal_quantity > order.quantity + EPS:
            logger.warning(
                f"{order.exchange} order {order.order_id}: executed {deal_quantity} "
                f"exceeds requested {order.quantity}, clamping"
            )
            deal_quantity = order.quantity
        order.deal_quantity = max(0.0, deal_quantity)
    if deal_rate is not None:
        order.deal_rate = deal_rate

    if order.status == OrderStatus.CANCELING and status == OrderStatus.FILLED:
        # filled before the cancel landed: terminal, never counted as canceled
        logger.info(f"{order.exchange} order {order.order_id}: filled while canceling")
        status = OrderStatus.OTHER
    if status == order.status:
        return False
    if not can_transition(order.status, status):
        logger.warning(
            f"{order.exchange} order {order.order_id}: refusing transition "
            f"{order.status.value} -> {status.value}"
        )
        return False
    logger.debug(f"{order.exchange} order {order.order_id}: {order.status.value} -> {status.value}")
    order.status = status
    return True


def mark_canceling(order: Order, raw: str) -> None:
    order.cancel_raw = raw
    if not can_transition(order.status, OrderStatus.CANCELING):
        logger.warning(
            f"{order.exchange} order {order.order_id}: cancel acknowledged in state {order.status.value}"
        )
        return
    order.status = OrderStatus.CANCELING


__all__ = [
    "TERMINAL",
    "can_transition",
    "resolve_status",
    "apply_status",
    "mark_canceling",
]
