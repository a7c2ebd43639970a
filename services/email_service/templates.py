"""
Placeholder substitution for stored email templates.

Both ``{{name}}`` and ``{name}`` are recognised. Only keys present in the
variables mapping are replaced; anything else is left in the output as is.
"""
from decimal import Decimal
from html import escape
from typing import Any, Dict, Iterable, Mapping

ORDER_CONFIRMATION = "order_confirmation"


def render_string(template: str, variables: Mapping[str, Any]) -> str:
    output = template
    for key, value in variables.items():
        text = "" if value is None else str(value)
        output = output.replace("{{" + key + "}}", text).replace("{" + key + "}", text)
    return output


def html_variables(variables: Mapping[str, Any]) -> Dict[str, Any]:
    """Escape values for HTML bodies. Keys ending in ``_html`` are pre-rendered markup."""
    return {
        key: value if key.endswith("_html") or value is None else escape(str(value))
        for key, value in variables.items()
    }


def format_money(value: Any) -> str:
    return f"{Decimal(str(value)):,.2f}"


def items_text(items: Iterable[Mapping[str, Any]]) -> str:
    lines = []
    for item in items:
        price = Decimal(str(item["price"]))
        lines.append(
            f"- {item['product_name']}\n"
            f"  Quantity: {item['quantity']}\n"
            f"  Price: ${format_money(price)}\n"
            f"  Subtotal: ${format_money(price * item['quantity'])}\n"
        )
    return "\n".join(lines)


def items_html(items: Iterable[Mapping[str, Any]]) -> str:
    rows = []
    for item in items:
        price = Decimal(str(item["price"]))
        rows.append(
            "<tr>"
            f"<td>{escape(str(item['product_name']))}</td>"
            f"<td>{item['quantity']}</td>"
            f"<td>${format_money(price)}</td>"
            f"<td>${format_money(price * item['quantity'])}</td>"
            "</tr>"
        )
    return "".join(rows)


DEFAULT_TEMPLATES: Dict[str, Dict[str, str]] = {
    ORDER_CONFIRMATION: {
        "subject": "Order Confirmation - {{order_number}}",
        "body_html": (
            "<h1>Thank You for Your Order!</h1>"
            "<p>Hi {{customer_name}},</p>"
            "<p>We're excited to confirm that we've received your order and it's being processed!</p>"
            "<h2>Order Details</h2>"
            "<p><strong>Order Number:</strong> {{order_number}}<br>"
            "<strong>Order Date:</strong> {{order_date}}<br>"
            "<strong>Total Amount:</strong> ${{order_total}}</p>"
            "<h3>Items Ordered:</h3>"
            "<table><tr><th>Product</th><th>Qty</th><th>Price</th><th>Subtotal</th></tr>"
            "{{order_items_html}}</table>"
            "<p><strong>Shipping Address:</strong><br>{{shipping_address}}</p>"
            "<p>We'll send you another email when your order ships.</p>"
        ),
        "body_text": (
            "Thank You for Your Order!\n\n"
            "Hi {{customer_name}},\n\n"
            "We're excited to confirm that we've received your order and it's being processed!\n\n"
            "Order Details:\n"
            "--------------\n"
            "Order Number: {{order_number}}\n"
            "Order Date: {{order_date}}\n"
            "Total Amount: ${{order_total}}\n\n"
            "Items Ordered:\n"
            "--------------\n"
            "{{order_items_text}}\n"
            "--------------\n"
            "Total: ${{order_total}}\n\n"
            "Shipping Address:\n{{shipping_address}}\n\n"
            "We'll send you another email when your order ships.\n\n"
            "Thank you for shopping with us!\n"
        ),
    },
}


def render_default(name: str, variables: Mapping[str, Any]) -> Dict[str, str]:
    template = DEFAULT_TEMPLATES[name]
    return {
        "subject": render_string(template["subject"], variables),
        "body_html": render_string(template["body_html"], html_variables(variables)),
        "body_text": render_string(template["body_text"], variables),
    }
