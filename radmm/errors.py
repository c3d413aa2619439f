"""
Error taxonomy for radmm.

Pure components raise these; the quoting loop decides which are
recoverable at the cycle boundary.
"""


class RadMMError(Exception):
    """Base class for all radmm errors."""


class InvalidPrice(RadMMError, ValueError):
    """Price is non-positive or not finite."""


class InvalidSize(RadMMError, ValueError):
    """Order size is non-positive."""


class InvalidTransition(RadMMError):
    """Pseudo-order status change not allowed by the order state machine."""

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(f"order {order_id}: illegal transition {current} -> {target}")
        self.order_id = order_id
        self.current = current
        self.target = target


class DuplicateFill(RadMMError):
    """A fill for this order was already applied to the ledger."""

    def __init__(self, order_id: str):
        super().__init__(f"fill already applied for order {order_id}")
        self.order_id = order_id


class InsufficientInventory(RadMMError):
    """Balance too small for the requested trade."""

    def __init__(self, token: str, required: float, available: float):
        super().__init__(
            f"insufficient {token}: required {required:.8f}, available {available:.8f}"
        )
        self.token = token
        self.required = required
        self.available = available


class ExchangeUnavailable(RadMMError):
    """Transient exchange failure; safe to retry."""


class ExchangeRejected(RadMMError):
    """Exchange refused the request; retrying will not help."""


class CancellationFailed(RadMMError):
    """Open orders could not be cancelled after all retries."""


class StopLossTriggered(RadMMError):
    """Total PnL fell below the configured stop-loss threshold."""

    def __init__(self, pnl_ratio: float, threshold: float):
        super().__init__(f"pnl ratio {pnl_ratio:.4f} below stop-loss {threshold:.4f}")
        self.pnl_ratio = pnl_ratio
        self.threshold = threshold


class InstanceExists(RadMMError):
    """A quoting loop is already registered for this user and instrument."""


class InstanceNotFound(RadMMError):
    """No quoting loop is registered for this user and instrument."""
