from __future__ import annotations

PAGE_WIDTH = 595
PAGE_HEIGHT = 842
LEFT_MARGIN = 50
TOP_MARGIN = 60
FONT_SIZE = 11
LEADING = 14


def sanitize_line(text) -> str:
    """Printable ASCII only; anything else becomes `?`."""
    out = []
    for ch in str(text if text is not None else ""):
        out.append(ch if 0x20 <= ord(ch) <= 0x7E else "?")
    return "".join(out)


def _pdf_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _money(value, currency: str) -> str:
    try:
        amount = float(value or 0.0)
    except (TypeError, ValueError):
        amount = 0.0
    return f"{currency} {amount:.2f}"


def billing_slip_lines(order: dict) -> list[str]:
    """Text lines of a billing slip for an order snapshot."""
    currency = (order.get("currency") or "INR").strip() or "INR"
    lines = [
        "BILLING SLIP",
        "",
        f"Order: {order.get('order_number') or order.get('shopify_order_id') or order.get('id') or ''}",
        f"Order ID: {order.get('id') or ''}",
        f"Merchant: {order.get('merchant_id') or ''}",
        f"Customer: {order.get('customer_email') or '-'}",
        "",
        "Items:",
    ]
    items = order.get("line_items") or []
    if not items:
        lines.append("  (no items)")
    for item in items:
        if not isinstance(item, dict):
            continue
        title = item.get("title") or "Item"
        sku = item.get("sku")
        qty = item.get("quantity") or 0
        total = item.get("total")
        if total is None:
            try:
                total = float(item.get("price") or 0.0) * int(qty)
            except (TypeError, ValueError):
                total = 0.0
        label = f"{title} [{sku}]" if sku else str(title)
        lines.append(f"  {label} x{qty}  {_money(total, currency)}")
    lines.extend(
        [
            "",
            f"Subtotal: {_money(order.get('subtotal'), currency)}",
            f"Payment: {(order.get('financial_status') or 'pending').lower()}",
            f"Workflow: {order.get('workflow_status') or 'vendor_pending'}",
        ]
    )
    return lines


def render_billing_slip_pdf(lines: list[str]) -> bytes:
    """Single A4 page, Helvetica, fixed leading. Same lines give the same bytes."""
    y0 = PAGE_HEIGHT - TOP_MARGIN
    ops = ["BT", f"/F1 {FONT_SIZE} Tf", f"{LEADING} TL", f"{LEFT_MARGIN} {y0} Td"]
    for idx, line in enumerate(lines or []):
        text = _pdf_escape(sanitize_line(line))
        if idx == 0:
            ops.append(f"({text}) Tj")
        else:
            ops.append(f"T* ({text}) Tj")
    ops.append("ET")
    stream = ("\n".join(ops) + "\n").encode("ascii")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {PAGE_WIDTH} {PAGE_HEIGHT}] "
            f"/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>"
        ).encode("ascii"),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
        b"<< /Length " + str(len(stream)).encode("ascii") + b" >>\nstream\n" + stream + b"endstream",
    ]

    buf = bytearray(b"%PDF-1.4\n")
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(buf))
        buf += f"{num} 0 obj\n".encode("ascii") + body + b"\nendobj\n"

    xref_at = len(buf)
    buf += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    buf += b"0000000000 65535 f \n"
    for off in offsets:
        buf += f"{off:010d} 00000 n \n".encode("ascii")
    buf += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode("ascii")
    return bytes(buf)
