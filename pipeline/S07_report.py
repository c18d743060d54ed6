"""
S07_report.py
=============
Stage 07 — Single-file HTML report.

Overview
--------
Renders REPORT_DIR/report.html from a jinja2 template: run parameters, the
per-sample summary table, the feature distribution table and every figure
written by Stage 06. SVG figures are inlined so the report is self-contained;
other formats are linked relative to the report.
"""

from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Optional
import os
import re

import jinja2
import polars as pl

from config.config import REPORT_DIR, GENOME_LABEL
from qol.logger import get_logger
from qol.utilities import ensure_dir

log = get_logger("S07")

_XML_PROLOG = re.compile(r"^\s*(<\?xml[^>]*\?>\s*)?(<!DOCTYPE[^>]*>\s*)?", re.DOTALL)

TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>
  body { font-family: Helvetica, Arial, sans-serif; margin: 2em auto; max-width: 1100px; color: #222; }
  table { border-collapse: collapse; margin: 1em 0; font-size: 0.9em; }
  th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: right; }
  th { background: #f2f2f2; }
  td:first-child, th:first-child { text-align: left; }
  figure { margin: 1.5em 0; }
  figure svg { max-width: 100%; height: auto; }
  .params td { text-align: left; }
</style>
</head>
<body>
<h1>{{ title }}</h1>
<p>Generated {{ generated }}</p>

<h2>Run parameters</h2>
<table class="params">
{% for key, value in params.items() %}  <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
{% endfor %}</table>

<h2>Samples</h2>
{{ table(summary) }}

<h2>Feature distribution</h2>
{{ table(distribution) }}

<h2>Cohort figures</h2>
{% for fig in cohort %}{{ figure(fig) }}{% endfor %}

{% for sample, figs in samples.items() %}
<h2>{{ sample }}</h2>
{% for fig in figs %}{{ figure(fig) }}{% else %}<p>No figures for this sample.</p>{% endfor %}
{% endfor %}
</body>
</html>
"""

_MACROS = """
{% macro table(t) -%}
<table>
  <tr>{% for c in t.columns %}<th>{{ c }}</th>{% endfor %}</tr>
{% for row in t.rows %}  <tr>{% for v in row %}<td>{{ v }}</td>{% endfor %}</tr>
{% endfor %}</table>
{%- endmacro %}
{% macro figure(f) -%}
<figure id="{{ f.name }}">
{% if f.svg %}{{ f.svg | safe }}{% else %}<img src="{{ f.href }}" alt="{{ f.name }}">{% endif %}
<figcaption>{{ f.name }}</figcaption>
</figure>
{%- endmacro %}
"""


def _fmt(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


def _table(df: Optional[pl.DataFrame]) -> dict:
    if df is None:
        return {"columns": [], "rows": []}
    return {
        "columns": df.columns,
        "rows": [[_fmt(v) for v in row] for row in df.iter_rows()],
    }


def _figure(path: Path, report_dir: Path) -> dict:
    path = Path(path)
    entry = {"name": path.stem, "svg": None, "href": None}
    if path.suffix.lower() == ".svg":
        entry["svg"] = _XML_PROLOG.sub("", path.read_text(encoding="utf-8"), count=1)
    else:
        entry["href"] = Path(os.path.relpath(path, report_dir)).as_posix()
    return entry


def render_report(
    summary: pl.DataFrame,
    figures: dict[str, list[Path]],
    *,
    distribution: Optional[pl.DataFrame] = None,
    params: Optional[dict] = None,
    out_dir: Path = REPORT_DIR,
    title: str = "Vector insertion site analysis",
) -> Path:
    """
    Render the HTML report.

    Parameters
    ----------
    summary : pl.DataFrame
        Stage-05 sample summary.
    figures : dict
        Stage-06 output: 'cohort' -> paths, sample_name -> paths.
    distribution : pl.DataFrame, optional
        Stage-05 feature distribution; shown without the genome rows'
        empty n_sites column.
    params : dict, optional
        Run parameters to list at the top.

    Returns
    -------
    Path
        out_dir / 'report.html'
    """
    out_dir = ensure_dir(Path(out_dir))
    env = jinja2.Environment(autoescape=jinja2.select_autoescape(default=True, default_for_string=True))
    macros = env.from_string(_MACROS).module
    template = env.from_string(TEMPLATE)

    if distribution is not None:
        distribution = distribution.with_columns(
            pl.when(pl.col("sample_name") == GENOME_LABEL)
              .then(pl.col("bases").cast(pl.Utf8))
              .otherwise(pl.col("n_sites").cast(pl.Utf8))
              .alias("n_sites")
        ).select(["sample_name", "feature", "n_sites", "fraction"])

    html = template.render(
        title=title,
        generated=datetime.now().strftime("%Y-%m-%d %H:%M"),
        params=params or {},
        summary=_table(summary),
        distribution=_table(distribution),
        cohort=[_figure(p, out_dir) for p in figures.get("cohort", [])],
        samples={s: [_figure(p, out_dir) for p in paths] for s, paths in figures.items() if s != "cohort"},
        table=macros.table,
        figure=macros.figure,
    )
    path = out_dir / "report.html"
    path.write_text(html, encoding="utf-8")
    log.info(f"[S07] report: {path}")
    return path


def run(summary: pl.DataFrame, figures: dict[str, list[Path]], **kwargs) -> Path:
    """Stage 07 entry point."""
    return render_report(summary, figures, **kwargs)
