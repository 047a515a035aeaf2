"""
In-memory reference store for diagnostics and pipeline tests.

Scored products (source "lnhpd"), by stored form coverage:

  p1  0.0   magnesium "oxide"              → mismatch / taxonomy_mismatch
  p2  0.0   magnesium, blank form          → mismatch / form_raw_missing
  p3  0.0   vitamin D, no verified forms   → missingVerified
  p4  0.5   (not zero, never diagnosed)
  p5  -     explain has no ratio
  p6  0.0   row without ingredient id      → ingredient_id_missing
  p7  0.0   zinc with no unit              → unit_missing
"""

import json
import sqlite3

from labelfacts.reference_store import init_schema

SOURCE = "lnhpd"

INGREDIENTS = [
    ("mg", "Magnesium", "mg", 420, 350),
    ("zn", "Zinc", "mg", 11, 40),
    ("vd", "Vitamin D", "mcg", 15, 100),
]

FORMS = [
    ("f1", "mg", "citrate", "Magnesium Citrate", "verified", 1.0, 1.0, "A"),
    ("f2", "mg", "bisglycinate", "Magnesium Bisglycinate", "verified", 1.0, 0.9, "B"),
    ("f3", "zn", "picolinate", "Zinc Picolinate", "verified", 1.0, 0.9, "B"),
    ("f4", "vd", "cholecalciferol", "Cholecalciferol", "pending", 1.0, 0.9, "A"),
]

ALIASES = [
    ("Magtein", "magtein", "l_threonate", None, 0.8, "verified", "seed"),
    ("chelated", "chelated", "bisglycinate", "mg", 0.7, "derived", "curation"),
]

SCORES = [
    ("p1", {"evidence": {"formCoverageRatio": 0}}, "2026-01-01"),
    ("p2", {"evidence": {"formCoverageRatio": 0.0}}, "2026-01-02"),
    ("p3", {"evidence": {"formCoverageRatio": 0}}, "2026-01-03"),
    ("p4", {"evidence": {"formCoverageRatio": 0.5}}, "2026-01-04"),
    ("p5", {"evidence": {}}, "2026-01-05"),
    ("p6", {"evidence": {"formCoverageRatio": 0}}, "2026-01-06"),
    ("p7", {"evidence": {"formCoverageRatio": 0}}, "2026-01-07"),
]

# source_id, ingredient_id, name_raw, form_raw, amount, unit, unit_kind, is_active, basis
PRODUCT_ROWS = [
    ("p1", "mg", "Magnesium", "oxide", 200, "mg", "mass", 1, None),
    ("p2", "mg", "Magnesium", None, 200, "mg", "mass", 1, None),
    ("p2", "zn", "Zinc", "picolinate", 10, "mg", "mass", 1, None),
    ("p3", "vd", "Vitamin D3", "cholecalciferol", 25, "mcg", "mass", 1, None),
    ("p4", "zn", "Zinc", "picolinate", 10, "mg", "mass", 1, None),
    ("p6", None, "Proprietary Blend", None, 500, "mg", "mass", 1, None),
    ("p6", "mg", "Magnesium", "oxide", 100, "IU", "iu", 1, None),
    ("p6", "zn", "Zinc", "oxide", 10, "mg", "mass", 0, None),
    ("p7", "zn", "Zinc", "picolinate", 10, None, None, 1, "per_day"),
]


def build_reference_db(conn=None) -> sqlite3.Connection:
    conn = conn or sqlite3.connect(":memory:")
    init_schema(conn)
    conn.executemany("INSERT INTO ingredients VALUES (?, ?, ?, ?, ?)", INGREDIENTS)
    conn.executemany("INSERT INTO ingredient_forms VALUES (?, ?, ?, ?, ?, ?, ?, ?)", FORMS)
    conn.executemany("INSERT INTO ingredient_form_aliases VALUES (?, ?, ?, ?, ?, ?, ?)", ALIASES)
    conn.executemany(
        "INSERT INTO product_scores VALUES (?, ?, ?, ?, ?)",
        [(SOURCE, sid, "v2", json.dumps(explain), at) for sid, explain, at in SCORES],
    )
    conn.executemany(
        "INSERT INTO product_ingredients (source, source_id, ingredient_id, name_raw, form_raw, "
        "amount, unit, unit_kind, is_active, basis) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [(SOURCE, *r) for r in PRODUCT_ROWS],
    )
    conn.commit()
    return conn
