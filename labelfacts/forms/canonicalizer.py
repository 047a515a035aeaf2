# labelfacts/forms/canonicalizer.py
"""
Form Token Canonicalizer

Turns free-text ingredient "form" descriptions from the regulatory dataset
("Rhizome, standardized extract", "Coenzyme Q10 (Ubidecarenone)") into an
ordered, deduplicated list of canonical tokens.

  Stage 1  CoQ10 special case → ["ubiquinone"], no further tokenization
  Stage 2  per-word rewrite table (one-to-one or one-to-many)
  Stage 3  cleanup: filler words, dosage tokens, re-validate, re-dedupe

Explicit chemical-form rules run independently of the word table: they
recognise whole-phrase forms ("sodium ascorbate", "5-MTHF", "P5P") that
punctuation splits apart before the word table ever sees them.

Both rule sets are closed, ordered tuples evaluated in fixed order.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Pattern, Sequence, Set, Tuple


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

_NON_TOKEN_RX = re.compile(r"[^a-z0-9_]+")
_DIGITS_RX = re.compile(r"^\d+$")
_DOSAGE_RX = re.compile(r"^\d+(?:mg|mcg|g|iu|ml|cfu)$")


def normalize_form_text(value: Optional[str]) -> str:
    """Lowercase, collapse every non-[a-z0-9_] run to one space, trim."""
    if not value:
        return ""
    return _NON_TOKEN_RX.sub(" ", value.lower()).strip()


def is_valid_token(token: str) -> bool:
    return len(token) > 1 and not _DIGITS_RX.match(token)


# ---------------------------------------------------------------------------
# Stage 1: CoQ10
# ---------------------------------------------------------------------------

COQ10_ALIASES: Tuple[str, ...] = (
    "coenzyme q10",
    "coenzymeq10",
    "coq10",
    "ubidecarenone",
    "ubiquinone",
    "q10",
)
COQ10_TOKEN = "ubiquinone"


def is_coq10(normalized: str) -> bool:
    if not normalized:
        return False
    return any(a in normalized for a in COQ10_ALIASES)


# ---------------------------------------------------------------------------
# Stage 2: word rewrite table
# ---------------------------------------------------------------------------

# word -> replacement token(s); unmapped words pass through unchanged
FORM_TOKEN_REWRITES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("rhizome", ("root",)),
    ("tuber", ("root",)),
    ("bulb", ("root",)),
    ("seed", ("seed",)),
    ("seeds", ("seed",)),
    ("aerial_parts", ("whole", "plant")),
    ("aerial", ("whole", "plant")),
    ("herb", ("whole", "plant")),
    ("standardized", ("std",)),
    ("standardised", ("std",)),
    ("tincture", ("extract",)),
    ("fluidextract", ("extract",)),
    ("powdered", ("powder",)),
    ("hydrochloride", ("hcl",)),
)

_REWRITE_LOOKUP = dict(FORM_TOKEN_REWRITES)


def rewrite_word(word: str) -> Tuple[str, ...]:
    return _REWRITE_LOOKUP.get(word, (word,))


# ---------------------------------------------------------------------------
# Stage 3: cleanup
# ---------------------------------------------------------------------------

# "dhe" is a recurring artifact in the source dataset's form strings
FILLER_TOKENS = frozenset({"and", "dhe"})


def _append(token: str, seen: Set[str], out: List[str]) -> None:
    norm = normalize_form_text(token)
    if not is_valid_token(norm) or norm in seen:
        return
    seen.add(norm)
    out.append(norm)


def _cleanup(tokens: Iterable[str]) -> List[str]:
    cleaned: List[str] = []
    seen: Set[str] = set()
    for token in tokens:
        if not token or token in FILLER_TOKENS or _DOSAGE_RX.match(token):
            continue
        _append(token, seen, cleaned)
    return cleaned


def canonicalize_form_tokens(values: Sequence[Optional[str]]) -> List[str]:
    """
    Canonicalize one or more form strings into a single ordered token list.
    Idempotent: feeding the output back in returns it unchanged.
    """
    out: List[str] = []
    seen: Set[str] = set()

    for value in values:
        normalized = normalize_form_text(value)
        if not normalized:
            continue
        if is_coq10(normalized):
            _append(COQ10_TOKEN, seen, out)
            continue
        for word in normalized.split():
            for token in rewrite_word(word):
                _append(token, seen, out)

    return _cleanup(out)


def canonicalize_form_text(value: Optional[str]) -> List[str]:
    return canonicalize_form_tokens([value])


# ---------------------------------------------------------------------------
# Explicit chemical-form rules
# ---------------------------------------------------------------------------

def _rx(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Evaluated in order; every matching rule contributes its tokens.
# More specific phrases sit before the generic salt they contain.
EXPLICIT_FORM_RULES: Tuple[Tuple[Pattern[str], Tuple[str, ...]], ...] = (
    (_rx(r"\bsodium[\s\-]+ascorbate\b"), ("sodium_ascorbate",)),
    (_rx(r"\bcalcium[\s\-]+ascorbate\b"), ("calcium_ascorbate",)),
    (_rx(r"\bascorbic[\s\-]+acid\b"), ("ascorbic_acid",)),
    (_rx(r"\b(?:l[\s\-]*)?5[\s\-]*mthf\b|\b(?:l[\s\-]*)?methyl[\s\-]*folate\b|\b5[\s\-]*methyltetrahydrofolate\b"), ("5_mthf",)),
    (_rx(r"\bfolic[\s\-]+acid\b"), ("folic_acid",)),
    (_rx(r"\bfolinic[\s\-]+acid\b|\bcalcium[\s\-]+folinate\b"), ("folinic_acid",)),
    (_rx(r"\bpyridoxal[\s\-]*5?[\s\-'’]*phosphate\b|\bp[\s\-]*5[\s\-]*p\b|\bplp\b"), ("p5p",)),
    (_rx(r"\bpyridoxine[\s\-]+(?:hcl|hydrochloride)\b"), ("pyridoxine_hcl",)),
    (_rx(r"\bmethyl[\s\-]*cobalamin\b"), ("methylcobalamin",)),
    (_rx(r"\bcyano[\s\-]*cobalamin\b"), ("cyanocobalamin",)),
    (_rx(r"\badenosyl[\s\-]*cobalamin\b"), ("adenosylcobalamin",)),
    (_rx(r"\bhydroxo?[\s\-]*cobalamin\b"), ("hydroxocobalamin",)),
    (_rx(r"\bubiquinol\b"), ("ubiquinol",)),
    (_rx(r"\bubiquinone\b|\bubidecarenone\b|\bcoq[\s\-]*10\b|\bcoenzyme[\s\-]*q[\s\-]*10\b"), ("ubiquinone",)),
    (_rx(r"\bcholecalciferol\b|\bvitamin[\s\-]*d[\s\-]*3\b"), ("d3_cholecalciferol",)),
    (_rx(r"\bergocalciferol\b|\bvitamin[\s\-]*d[\s\-]*2\b"), ("d2_ergocalciferol",)),
    (_rx(r"\bbis[\s\-]*glycinate\b|\bdi[\s\-]*glycinate\b"), ("bisglycinate",)),
    (_rx(r"(?<!bis[\s\-])(?<!di[\s\-])\bglycinate\b"), ("glycinate",)),
    (_rx(r"\bcitrate\b"), ("citrate",)),
    (_rx(r"\bmalate\b"), ("malate",)),
    (_rx(r"\bgluconate\b"), ("gluconate",)),
    (_rx(r"\bsulfate\b|\bsulphate\b"), ("sulfate",)),
    (_rx(r"\bcarbonate\b"), ("carbonate",)),
    (_rx(r"\bchloride\b|\bhydrochloride\b"), ("chloride",)),
    (_rx(r"\boxide\b"), ("oxide",)),
    (_rx(r"\bphosphate\b"), ("phosphate",)),
    (_rx(r"\btaurate\b"), ("taurate",)),
    (_rx(r"\bchelated?\b"), ("chelate",)),
    (_rx(r"\bacetate\b"), ("acetate",)),
    (_rx(r"\bsuccinate\b"), ("succinate",)),
    (_rx(r"\bpicolinate\b"), ("picolinate",)),
    (_rx(r"\bthreonate\b"), ("threonate",)),
)


def extract_explicit_form_tokens(text: Optional[str]) -> List[str]:
    """Tokens of every explicit rule matching `text`, in rule order, deduplicated."""
    if not text:
        return []
    hits: List[str] = []
    for pattern, tokens in EXPLICIT_FORM_RULES:
        if pattern.search(text):
            for token in tokens:
                if token not in hits:
                    hits.append(token)
    return hits


def collect_explicit_form_tokens(sources: Iterable[Optional[str]]) -> List[str]:
    """Run the explicit rules over several strings and canonicalize the union."""
    hits: List[str] = []
    for source in sources:
        hits.extend(extract_explicit_form_tokens(source))
    return canonicalize_form_tokens(hits)
