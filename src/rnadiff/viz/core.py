"""
Figure containers shared by every plot.

Plotting methods return a ``Figure``: the matplotlib figure together with
a title, a one-line description and the numbers behind it (``metadata``).
A workflow run keeps its figures in a ``FigureCollection`` keyed
``{analysis}/{name}``, saves them to disk and renders them into a single
self-contained HTML report, grouped by analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Literal, Optional
from datetime import datetime
import base64
import html
import io

import matplotlib.figure
import matplotlib.pyplot as plt

ImageFormat = Literal["png", "pdf", "svg"]

_FORMATS = ("png", "pdf", "svg")


@dataclass
class Figure:
    """
    A drawn plot and what it shows.

    Attributes:
        fig: The matplotlib figure
        title: Heading used in reports
        description: Short caption (sample/gene counts, thresholds)
        metadata: Values the plot was drawn from, plus ``created_at``

    Examples:
        >>> figure = viz.plot_ma(res)
        >>> figure.save("ma_dex_trt_vs_untrt.pdf")
    """
    fig: matplotlib.figure.Figure
    title: str
    description: str = ""
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault("created_at", datetime.now().isoformat(timespec="seconds"))

    def save(self, path: Path | str, format: Optional[ImageFormat] = None, dpi: int = 300, **kwargs) -> Path:
        """
        Write the figure; the format defaults to the file extension (png
        when the extension is not an image format).
        """
        path = Path(path)
        if format is None:
            suffix = path.suffix.lstrip(".").lower()
            format = suffix if suffix in _FORMATS else "png"
        path.parent.mkdir(parents=True, exist_ok=True)
        options = {"dpi": dpi, "bbox_inches": "tight", "facecolor": "white"}
        options.update(kwargs)
        self.fig.savefig(path, format=format, **options)
        return path

    def to_base64(self, format: ImageFormat = "png", dpi: int = 150) -> str:
        buffer = io.BytesIO()
        self.fig.savefig(buffer, format=format, dpi=dpi, bbox_inches="tight", facecolor="white")
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def close(self):
        plt.close(self.fig)


class FigureCollection:
    """
    Figures by key, iterated in the order they were added.

    Re-adding a key replaces the figure but keeps its position.

    Examples:
        >>> figures = FigureCollection()
        >>> figures.add("airway/dispersion", viz.plot_dispersion_estimates(dds))
        >>> figures.add("airway/pca", viz.plot_pca(result, color_by="dex"))
        >>> figures.save_all("figures/", format="pdf")
        >>> figures.to_html_report("report.html", title="airway")
    """

    def __init__(self):
        self.figures: dict[str, Figure] = {}

    def add(self, key: str, figure: Figure) -> FigureCollection:
        self.figures[key] = figure
        return self

    def get(self, key: str) -> Optional[Figure]:
        return self.figures.get(key)

    def __getitem__(self, key: str) -> Figure:
        return self.figures[key]

    def __contains__(self, key: str) -> bool:
        return key in self.figures

    def __len__(self) -> int:
        return len(self.figures)

    def __iter__(self) -> Iterator[tuple[str, Figure]]:
        return iter(list(self.figures.items()))

    def save_all(self, output_dir: Path | str, format: ImageFormat = "png", dpi: int = 300) -> list[Path]:
        """Save every figure as ``{output_dir}/{key}.{format}`` (keys may contain ``/``)."""
        output_dir = Path(output_dir)
        return [figure.save(output_dir / f"{key}.{format}", format=format, dpi=dpi) for key, figure in self]

    def to_html_report(
        self,
        output_path: Path | str,
        title: str = "Differential expression",
        description: str = "",
        sections: Optional[dict[str, str]] = None,
    ) -> Path:
        """
        Write one HTML page with every figure embedded as PNG.

        Args:
            output_path: HTML file to write
            title: Page heading
            description: Paragraph under the heading
            sections: Preformatted text blocks (heading -> text) shown
                before the figures, e.g. result summaries and session info
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        groups: dict[str, list[tuple[str, Figure]]] = {}
        for key, figure in self:
            group = key.split("/", 1)[0] if "/" in key else ""
            groups.setdefault(group, []).append((key, figure))

        parts = []
        for heading, text in (sections or {}).items():
            parts.append(
                f'<section class="text"><h2>{html.escape(heading)}</h2>'
                f"<pre>{html.escape(text)}</pre></section>"
            )
        for group, members in groups.items():
            if group:
                parts.append(f"<h2 class=\"group\">{html.escape(group)}</h2>")
            for key, figure in members:
                parts.append(_figure_section(key, figure))

        nav = "".join(
            f'<li><a href="#{html.escape(key)}">{html.escape(key)}</a></li>' for key in self.figures
        )
        page = _PAGE.format(
            title=html.escape(title),
            description=html.escape(description),
            timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            nav=nav,
            body="\n".join(parts),
        )
        output_path.write_text(page, encoding="utf-8")
        return output_path

    def close_all(self):
        """Close every figure and empty the collection."""
        for figure in self.figures.values():
            figure.close()
        self.figures.clear()


def _figure_section(key: str, figure: Figure) -> str:
    image = figure.to_base64(format="png", dpi=150)
    caption = f'<p class="caption">{html.escape(figure.description)}</p>' if figure.description else ""
    return (
        f'<section class="figure" id="{html.escape(key)}">'
        f"<h3>{html.escape(figure.title)}</h3>{caption}"
        f'<img src="data:image/png;base64,{image}" alt="{html.escape(figure.title)}">'
        "</section>"
    )


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{title}</title>
<style>
body {{ font-family: Helvetica, Arial, sans-serif; color: #222; background: #f7f7f7; margin: 0; padding: 2rem; }}
main {{ max-width: 1100px; margin: 0 auto; }}
header {{ border-bottom: 2px solid #ddd; margin-bottom: 1.5rem; }}
.generated, .caption {{ color: #666; font-size: 0.85rem; }}
nav ul {{ columns: 3; font-size: 0.85rem; }}
section {{ background: #fff; border-radius: 6px; padding: 1rem 1.5rem; margin-bottom: 1.2rem; }}
h2.group {{ margin-top: 2rem; }}
pre {{ font-size: 0.8rem; overflow-x: auto; }}
img {{ max-width: 100%; height: auto; display: block; margin: 0 auto; }}
</style>
</head>
<body>
<main>
<header>
<h1>{title}</h1>
<p class="generated">Generated {timestamp}</p>
<p>{description}</p>
<nav><ul>{nav}</ul></nav>
</header>
{body}
</main>
</body>
</html>
"""
