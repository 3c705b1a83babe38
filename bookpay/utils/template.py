import os
from decimal import Decimal, InvalidOperation

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")


def format_money(amount, currency: str = "") -> str:
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return str(amount)
    return f"{value:,} {currency}".strip()


env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"])
)
env.filters["money"] = format_money


def render_template(template_path: str, **context) -> str:
    template = env.get_template(template_path)
    return template.render(**context)
