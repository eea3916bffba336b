"""
Input validators: called by the engines before touching the DB.

Every check raises errors.ValidationError naming the offending (camelCase)
field, so handlers never depend on the driver to reject bad documents.
"""

import re
from typing import Any, Dict, Iterable, Optional

from email_validator import EmailNotValidError, validate_email as check_email
from pydantic.alias_generators import to_camel

from errors import ValidationError
from schemas import CART_ACTIONS, CATEGORIES, ORDER_STATUSES, ROLES

# 8-16 chars, no whitespace, at least one digit, upper, lower and special character
PASSWORD_RE = re.compile(r"^(?=.*\d)(?=.*[A-Z])(?=.*[a-z])(?=.*[^\w\d\s:])(\S){8,16}$")

PRODUCT_REQUIRED = ("name", "description", "cost_price", "sale_price", "category")
SIGNUP_REQUIRED = ("name", "age", "email", "password", "address", "contact")
PROFILE_FIELDS = ("name", "age", "address", "contact")


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def require_fields(payload: Dict[str, Any], fields: Iterable[str], message: str) -> None:
    for name in fields:
        if _is_missing(payload.get(name)):
            raise ValidationError(message, field=to_camel(name))


def validate_email(email: Any) -> str:
    if not isinstance(email, str):
        raise ValidationError(f"{email} is not a valid email", field="email")
    try:
        checked = check_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"{email} is not a valid email: {e}", field="email")
    return checked.normalized.lower()


def validate_password(password: Any, field: str = "password") -> str:
    if not isinstance(password, str) or not PASSWORD_RE.match(password):
        raise ValidationError("Please enter a stronger password", field=field)
    return password


def validate_price(value: Any, field: str) -> float:
    if not _is_number(value):
        raise ValidationError(f"{field} must be a number", field=field)
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return float(value)


def validate_stock(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError("Stock must be an integer", field="stock")
    if value < 0:
        raise ValidationError("Stock cannot be negative", field="stock")
    return value


def validate_category(value: Any) -> str:
    if value not in CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORIES)}", field="category")
    return value


def validate_product(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Check a complete product document (new, or existing merged with changes)."""
    require_fields(doc, PRODUCT_REQUIRED, "All required fields must be provided")
    cost = validate_price(doc["cost_price"], "costPrice")
    sale = validate_price(doc["sale_price"], "salePrice")
    if sale > cost:
        raise ValidationError("Sale price must be equal or lesser than cost price", field="salePrice")
    validate_category(doc["category"])
    if doc.get("stock") is not None:
        validate_stock(doc["stock"])
    images = doc.get("images")
    if images is not None and not all(isinstance(i, str) for i in images):
        raise ValidationError("Images must be a list of URLs", field="images")
    return doc


def validate_product_update(changes: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
    if not changes:
        raise ValidationError("No fields to update")
    if "stock" in changes and _is_number(changes["stock"]) and changes["stock"] < 0:
        raise ValidationError("Stock cannot be negative", field="stock")
    merged = {**existing, **changes}
    validate_product(merged)
    return changes


def validate_quantity(value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError("Quantity must be an integer of at least 1", field="quantity")
    return value


def validate_cart_action(action: Any) -> str:
    if action not in CART_ACTIONS:
        raise ValidationError("Invalid action type", field="action")
    return action


def validate_shipping_address(address: Any) -> str:
    if not isinstance(address, str) or not address.strip():
        raise ValidationError("Shipping address is required", field="shippingAddress")
    return address.strip()


def validate_order_status(status: Any) -> str:
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid status", field="status")
    return status


def validate_role(role: Any) -> str:
    if role not in ROLES:
        raise ValidationError("Invalid role", field="role")
    return role


def validate_age(age: Any) -> int:
    if not isinstance(age, int) or isinstance(age, bool) or age < 0:
        raise ValidationError("Age must be a non-negative integer", field="age")
    return age


def validate_signup(payload: Dict[str, Any]) -> Dict[str, Any]:
    if _is_missing(payload.get("email")) or _is_missing(payload.get("password")):
        raise ValidationError("Email and password are required")
    require_fields(payload, SIGNUP_REQUIRED, "All required fields must be provided")
    payload["email"] = validate_email(payload["email"])
    validate_password(payload["password"])
    validate_age(payload["age"])
    return payload


def validate_profile_update(payload: Dict[str, Any]) -> Dict[str, Any]:
    updates = {k: v for k, v in payload.items() if k in PROFILE_FIELDS and v is not None}
    if not updates:
        raise ValidationError("No valid fields to update")
    if "age" in updates:
        validate_age(updates["age"])
    for name in ("name", "address", "contact"):
        if name in updates and _is_missing(updates[name]):
            raise ValidationError(f"{name} cannot be empty", field=name)
    return updates


def validate_amount(amount: Optional[Any]) -> float:
    if not _is_number(amount) or amount <= 0:
        raise ValidationError("Invalid amount", field="amount")
    return float(amount)
