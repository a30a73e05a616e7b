import io

from PIL import Image


def make_image(fmt: str = "PNG", size=(10, 10), mode: str = "RGB", color=(200, 10, 10)) -> bytes:
    buf = io.BytesIO()
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def words(n: int) -> str:
    return " ".join(f"word{i}" for i in range(n))


def html_page(title: str | None = None, body: str = "", head: str = "") -> str:
    title_tag = f"<title>{title}</title>" if title is not None else ""
    return f"<html><head>{title_tag}{head}</head><body>{body}</body></html>"
