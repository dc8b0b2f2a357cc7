from dataclasses import dataclass
from typing import List, Optional

from core.database.models import AlertType


@dataclass(frozen=True)
class Alert:
    type: AlertType
    message: str


def _money(value: int, currency: Optional[str]) -> str:
    return f"${value} {currency}" if currency else f"${value}"


def evaluate_alerts(task, new, previous) -> List[Alert]:
    """Compare a fresh OK result with the task's preceding OK result.

    Args:
        task: WatchTask with the alert preferences
        new: the new OK outcome (anything with price_value and in_stock)
        previous: the preceding OK CheckResult, or None for the first one

    Returns:
        Every alert that fires, in PRICE_DROP, TARGET_REACHED, BACK_IN_STOCK order
    """
    alerts = []
    new_price = new.price_value
    previous_price = previous.price_value if previous is not None else None

    if (task.alert_on_drop and new_price is not None and previous_price is not None
            and new_price < previous_price):
        alerts.append(Alert(
            AlertType.PRICE_DROP,
            f"Price dropped from {_money(previous_price, task.currency)} to {_money(new_price, task.currency)}",
        ))

    if task.target_price is not None and new_price is not None and new_price <= task.target_price:
        alerts.append(Alert(
            AlertType.TARGET_REACHED,
            f"Price reached target: {_money(new_price, task.currency)} "
            f"(Target: {_money(task.target_price, task.currency)})",
        ))

    # Unknown (None) previous availability never counts as out of stock
    if (task.alert_on_back_in_stock and new.in_stock is True
            and previous is not None and previous.in_stock is False):
        alerts.append(Alert(AlertType.BACK_IN_STOCK, "Item is back in stock!"))

    return alerts
