from __future__ import annotations

from io import BytesIO

import pandas as pd

from ..validation.rules import DomainRules

"""Downloadable spreadsheet template: header row plus one example row."""

__all__ = [
    "build_template",
]


def build_template(rules: DomainRules) -> bytes:
    example = [rules.example_date, rules.example_time]
    example += [spec.example for spec in rules.reading_type.FIELDS]
    df = pd.DataFrame([example], columns=rules.template_headers)
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=f"{rules.label}Template", index=False)
    return buf.getvalue()
