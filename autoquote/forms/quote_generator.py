"""
Quotation PDF Generator
- Company block, quotation number / date / validity box
- Bill-to and ship-to blocks from the customer record
- Shared column grid with side borders, wrapped descriptions, page breaks
- CGST / SGST / total summary and total in words
- Items that could not be matched are listed for clarification
"""
import io
import logging
import os

from reportlab.lib.colors import HexColor, black
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from autoquote.core import paths
from autoquote.core.errors import QuoteGenerationError

log = logging.getLogger("quote_gen")

HEADER_BG = HexColor("#d9e2f3")
BORDER_CLR = HexColor("#333333")
ROW_LINE_CLR = HexColor("#bbbbbb")
MUTED = HexColor("#888888")
PAD = 4

# Column layout (fractions of table width)
COL_LABELS = ["S.No", "Description", "HSN", "Qty", "Unit", "Rate", "Amount"]
COL_WIDTHS = [0.07, 0.39, 0.10, 0.08, 0.08, 0.14, 0.14]
COL_ALIGN = ["C", "L", "C", "C", "C", "R", "R"]


def money(value) -> str:
    return f"Rs. {value:,.2f}"


def _col_edges(lm, tw):
    widths = [tw * p for p in COL_WIDTHS]
    edges = []; x = lm
    for w in widths:
        edges.append(x); x += w
    return edges, widths


def _wrap(text, n=50):
    words, lines, cur = (text or "").split(), [], ""
    for w in words:
        t = cur + (" " if cur else "") + w
        if len(t) > n and cur: lines.append(cur); cur = w
        else: cur = t
    if cur: lines.append(cur)
    return lines or [""]


def _draw_cell_text(c, text, x, w, y_mid, align="C", font="Helvetica", size=9):
    c.setFont(font, size)
    if align == "L":   c.drawString(x + PAD, y_mid, text)
    elif align == "R": c.drawRightString(x + w - PAD, y_mid, text)
    else:              c.drawCentredString(x + w/2, y_mid, text)


def _draw_col_borders(c, edges, widths, y_top, y_bot, color=BORDER_CLR, width=0.5):
    """Vertical column dividers including both outer edges."""
    c.setStrokeColor(color); c.setLineWidth(width)
    for x in edges + [edges[-1] + widths[-1]]:
        c.line(x, y_top, x, y_bot)


def _fmt_date(d):
    return d.strftime("%d %B %Y") if d else ""


def render_quote_pdf(quote, company: dict) -> bytes:
    """Render an assembled QuoteDocument to PDF bytes. Raises QuoteGenerationError."""
    try:
        return _render(quote, company or {})
    except (ValueError, TypeError, AttributeError, KeyError, OSError) as e:
        raise QuoteGenerationError(f"Could not render quote {quote.quote_id}: {e}") from e


def _render(quote, company):
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Quotation {quote.quote_id}")
    W, H = A4; LM, RM = 36, W - 36; TW = RM - LM
    edges, widths = _col_edges(LM, TW)
    desc_chars = int(widths[1] / 4.6)
    page_num = 1

    # ─── Company block ────────────────────────────────────────
    y = H - 50
    c.setFillColor(black); c.setFont("Helvetica-Bold", 16)
    c.drawString(LM, y, company.get("name", ""))
    c.setFont("Helvetica", 8.5); cy = y - 14
    for ln in _wrap(company.get("address", ""), 60):
        c.drawString(LM, cy, ln); cy -= 11
    contact = "  |  ".join(v for v in (company.get("phone", ""), company.get("email", "")) if v)
    if contact:
        c.drawString(LM, cy, contact); cy -= 11
    for label, key in (("GSTIN", "gstin"), ("PAN", "pan")):
        if company.get(key):
            c.drawString(LM, cy, f"{label}: {company[key]}"); cy -= 11

    # ─── Title + number/date box ──────────────────────────────
    c.setFont("Helvetica-Bold", 24)
    c.drawRightString(RM, y, "QUOTATION")
    bw = 200; bx = RM - bw; rh = 18; by = y - 12
    for i, (lbl, val) in enumerate([("QUOTE #", quote.quote_id),
                                    ("DATE", _fmt_date(quote.date)),
                                    ("VALID UNTIL", _fmt_date(quote.valid_until))]):
        ry = by - (i + 1) * rh
        c.setFillColor(HEADER_BG); c.rect(bx, ry, bw, rh, fill=1, stroke=0)
        c.setStrokeColor(black); c.setLineWidth(0.6); c.rect(bx, ry, bw, rh, stroke=1, fill=0)
        c.setFillColor(black)
        c.setFont("Helvetica-Bold", 8.5); c.drawString(bx + 8, ry + 5, lbl)
        c.setFont("Helvetica", 9.5); c.drawRightString(RM - 8, ry + 5, val)
    y = min(cy, by - 3 * rh) - 18

    # ─── Bill-to / Ship-to ────────────────────────────────────
    bill = [quote.company_name or quote.customer_name]
    if quote.company_name and quote.customer_name:
        bill.append(f"Attn: {quote.customer_name}")
    bill.extend(_wrap(quote.billing_address, 48) if quote.billing_address else [])
    if quote.customer_gstin:
        bill.append(f"GSTIN: {quote.customer_gstin}")
    if quote.customer_email:
        bill.append(quote.customer_email)
    ship = _wrap(quote.shipping_address, 48) if quote.shipping_address \
        else ["Same as Billing Address"]

    sx = LM + TW / 2 + 10
    c.setFont("Helvetica-Bold", 10)
    c.drawString(LM, y, "Bill To:"); c.drawString(sx, y, "Ship To:")
    c.setFont("Helvetica", 9)
    ay = y - 13
    for ln in bill:
        c.drawString(LM, ay, ln); ay -= 12
    sy = y - 13
    for ln in ship:
        c.drawString(sx, sy, ln); sy -= 12
    y = min(ay, sy) - 10

    # ─── Line items table ─────────────────────────────────────
    def _draw_table_header(y_pos):
        hh = 18; hy = y_pos - hh
        c.setFillColor(HEADER_BG); c.rect(LM, hy, TW, hh, fill=1, stroke=0)
        c.setStrokeColor(black); c.setLineWidth(0.7)
        c.line(LM, hy, RM, hy); c.line(LM, hy + hh, RM, hy + hh)
        _draw_col_borders(c, edges, widths, hy + hh, hy)
        c.setFillColor(black)
        for i, label in enumerate(COL_LABELS):
            _draw_cell_text(c, label, edges[i], widths[i], hy + 5, "C", "Helvetica-Bold", 8)
        return hy

    y = _draw_table_header(y)
    table_top = y + 18

    for idx, item in enumerate(quote.matched_items, start=1):
        dl = _wrap(item.product_name, desc_chars)
        spec = _wrap(item.specifications, desc_chars) if item.specifications else []
        row_h = max(20, (len(dl) + len(spec)) * 10 + 8)
        ry = y - row_h
        if ry < 90:
            _draw_col_borders(c, edges, widths, table_top, y)
            c.setFont("Helvetica", 8); c.setFillColor(MUTED)
            c.drawRightString(RM, 25, f"Page {page_num}")
            c.showPage(); page_num += 1; y = H - 40
            y = _draw_table_header(y); table_top = y + 18
            ry = y - row_h

        c.setFillColor(black)
        y_mid = ry + row_h / 2 - 3
        _draw_cell_text(c, str(idx), edges[0], widths[0], y_mid, COL_ALIGN[0])
        ty = y - 12
        c.setFont("Helvetica-Bold", 8.5)
        for ln in dl:
            c.drawString(edges[1] + PAD, ty, ln); ty -= 10
        c.setFont("Helvetica", 7.5); c.setFillColor(MUTED)
        for ln in spec:
            c.drawString(edges[1] + PAD, ty, ln); ty -= 10
        c.setFillColor(black)
        _draw_cell_text(c, item.hsn_code or "-", edges[2], widths[2], y_mid, COL_ALIGN[2])
        _draw_cell_text(c, str(item.quantity), edges[3], widths[3], y_mid, COL_ALIGN[3])
        _draw_cell_text(c, item.unit or "", edges[4], widths[4], y_mid, COL_ALIGN[4])
        _draw_cell_text(c, f"{item.unit_price:,.2f}", edges[5], widths[5], y_mid, COL_ALIGN[5])
        _draw_cell_text(c, f"{item.total:,.2f}", edges[6], widths[6], y_mid, COL_ALIGN[6])

        c.setStrokeColor(ROW_LINE_CLR); c.setLineWidth(0.3)
        c.line(LM, ry, RM, ry)
        y = ry

    _draw_col_borders(c, edges, widths, table_top, y)
    c.setStrokeColor(black); c.setLineWidth(0.8)
    c.line(LM, y, RM, y)

    # ─── Totals, aligned to the last 2 columns ────────────────
    tot_x = edges[5]; tot_w = widths[5] + widths[6]; mid_x = edges[6]
    y -= 4

    def _trow(label, value_str, bold=False, shaded=False):
        nonlocal y; trh = 18; y -= trh
        if shaded:
            c.setFillColor(HEADER_BG); c.rect(tot_x, y, tot_w, trh, fill=1, stroke=0)
        c.setStrokeColor(HexColor("#999999")); c.setLineWidth(0.3)
        c.rect(tot_x, y, tot_w, trh, stroke=1, fill=0)
        c.line(mid_x, y, mid_x, y + trh)
        c.setFillColor(black)
        c.setFont("Helvetica-Bold", 8); c.drawRightString(mid_x - PAD, y + 5, label)
        c.setFont("Helvetica-Bold" if bold else "Helvetica", 9)
        c.drawRightString(RM - PAD, y + 5, value_str)

    if y < 140:
        c.showPage(); page_num += 1; y = H - 40
    cgst_pct = round(quote.cgst / quote.subtotal * 100, 2) if quote.subtotal else 0
    sgst_pct = round(quote.sgst / quote.subtotal * 100, 2) if quote.subtotal else 0
    _trow("SUBTOTAL", money(quote.subtotal), shaded=True)
    _trow(f"CGST {cgst_pct:g}%", money(quote.cgst))
    _trow(f"SGST {sgst_pct:g}%", money(quote.sgst))
    _trow("TOTAL", money(quote.total), bold=True, shaded=True)

    y -= 18
    c.setFont("Helvetica-Bold", 9); c.drawString(LM, y, "Total In Words:")
    c.setFont("Helvetica", 9)
    wy = y
    for ln in _wrap(quote.amount_in_words, 80):
        c.drawString(LM + 80, wy, ln); wy -= 12
    y = wy - 10

    # ─── Items needing clarification ──────────────────────────
    if quote.unmatched_items:
        if y < 100:
            c.showPage(); page_num += 1; y = H - 40
        c.setFont("Helvetica-Bold", 9.5); c.setFillColor(HexColor("#b45309"))
        c.drawString(LM, y, "Items requiring clarification (not priced):")
        c.setFillColor(black); c.setFont("Helvetica", 8.5); y -= 13
        for item in quote.unmatched_items:
            if y < 60:
                c.showPage(); page_num += 1; y = H - 40
                c.setFont("Helvetica", 8.5)
            line = f"- {item.name} (Qty: {item.quantity})"
            if item.specifications:
                line += f" - {item.specifications}"
            for ln in _wrap(line, 110):
                c.drawString(LM + 8, y, ln); y -= 11

    # Footer
    c.setFont("Helvetica", 7.5); c.setFillColor(MUTED)
    c.drawString(LM, 38, "This is a computer generated quotation. "
                         "Prices are subject to change after the validity date.")
    c.drawRightString(RM, 25, f"Page {page_num}")
    c.save()
    data = buf.getvalue()
    log.info("Rendered quote %s (%d bytes, %d pages)", quote.quote_id, len(data), page_num,
             extra={"quote_id": quote.quote_id, "total": quote.total})
    return data


def save_quote_pdf(pdf_bytes: bytes, request_id: str, output_dir=None) -> str:
    """Write a rendered quote to OUTPUT_DIR/quotes/quote-<request id>.pdf."""
    output_dir = output_dir or paths.QUOTES_DIR
    try:
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, f"quote-{request_id}.pdf")
        with open(path, "wb") as f:
            f.write(pdf_bytes)
    except OSError as e:
        raise QuoteGenerationError(f"Could not save quote PDF: {e}") from e
    return path
