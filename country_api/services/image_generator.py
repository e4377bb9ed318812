from pathlib import Path
from typing import Optional

import PIL
from PIL import Image, ImageDraw, ImageFont

from country_api.config import settings

W, H = 800, 480
BG = (255, 255, 255)
FG = (34, 34, 34)
MUTED = (90, 90, 90)
GRID = (225, 230, 240)
HEADER_BG = (245, 247, 250)
STRIPE = (252, 253, 255)
ACCENT = (60, 99, 243)
MAX_ROWS = 5


def _resolve_font_path(font_filename: str) -> Optional[Path]:
    base = Path(PIL.__file__).parent
    for p in (base / font_filename, base / "fonts" / font_filename, base.parent / font_filename):
        if p.exists():
            return p
    return None


def _load_font(name: str, size: int):
    p = _resolve_font_path(name)
    if p is not None:
        try:
            return ImageFont.truetype(str(p), size)
        except OSError:
            pass
    return ImageFont.load_default()


def _text_width(draw: ImageDraw.ImageDraw, text: str, font) -> int:
    left, _, right, _ = draw.textbbox((0, 0), text, font=font)
    return right - left


def format_gdp(val) -> str:
    """Compact dollar figure: 1234567 -> $1.2M."""
    if val is None:
        return "-"
    n = float(val)
    for div, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if abs(n) >= div:
            s = f"{n / div:.1f}".rstrip("0").rstrip(".")
            return f"${s}{suffix}"
    return f"${n:,.0f}"


def generate_summary_image(top_countries, total: int, timestamp: str, path: Optional[Path] = None) -> Path:
    """Render the summary card and return where it was written.

    Layout: title, "Total Countries | Last Refresh" line, then a table of the
    top countries (Rank | Country | Estimated GDP).
    """
    out = Path(path) if path is not None else settings.summary_image_path
    out.parent.mkdir(parents=True, exist_ok=True)

    img = Image.new("RGB", (W, H), color=BG)
    draw = ImageDraw.Draw(img)

    font_title = _load_font("DejaVuSans-Bold.ttf", 20)
    font_meta = _load_font("DejaVuSans.ttf", 16)
    font_header = _load_font("DejaVuSans-Bold.ttf", 16)
    font_cell = font_meta

    margin = 24
    y = margin
    draw.text((margin, y), "Country Currency & Exchange Summary", fill=ACCENT, font=font_title)
    y += 30
    draw.text((margin, y), f"Total Countries: {total}  |  Last Refresh: {timestamp}", fill=MUTED, font=font_meta)
    y += 24

    table_top = y + 10
    table_left = margin
    table_right = W - margin
    row_h = 38
    header_h = 40

    col_rank_w = 70
    col_country_w = int((table_right - table_left - col_rank_w) * 0.6)
    x_rank = table_left
    x_country = x_rank + col_rank_w
    x_gdp_right = table_right - 12

    draw.rectangle([table_left, table_top, table_right, table_top + header_h], fill=HEADER_BG)
    draw.text((x_rank + 12, table_top + 11), "#", fill=FG, font=font_header)
    draw.text((x_country + 12, table_top + 11), "Country", fill=FG, font=font_header)
    header = "Estimated GDP (USD)"
    draw.text((x_gdp_right - _text_width(draw, header, font_header), table_top + 11), header, fill=FG, font=font_header)
    draw.line([table_left, table_top + header_h, table_right, table_top + header_h], fill=GRID, width=1)

    rows = list(top_countries)[:MAX_ROWS]
    y_row = table_top + header_h
    for i in range(MAX_ROWS):
        if i % 2 == 0:
            draw.rectangle([table_left, y_row, table_right, y_row + row_h], fill=STRIPE)
        if i < len(rows):
            c = rows[i]
            gdp = format_gdp(getattr(c, "estimated_gdp", None))
            draw.text((x_rank + 12, y_row + 10), str(i + 1), fill=FG, font=font_cell)
            draw.text((x_country + 12, y_row + 10), getattr(c, "name", None) or "-", fill=FG, font=font_cell)
            draw.text((x_gdp_right - _text_width(draw, gdp, font_cell), y_row + 10), gdp, fill=FG, font=font_cell)
        draw.line([table_left, y_row + row_h, table_right, y_row + row_h], fill=GRID, width=1)
        y_row += row_h

    draw.rectangle([table_left, table_top, table_right, y_row], outline=GRID, width=1)
    draw.text(
        (margin, y_row + 16),
        "Data sources: Rest Countries API, Exchange Rates API (base USD)",
        fill=(110, 110, 110),
        font=font_meta,
    )

    img.save(str(out), format="PNG")
    return out
