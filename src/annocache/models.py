"""Data models shared between the cache layer, adapters and facades."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")

# PhyloP scores range from -14 (fast-evolving) to +6 (conserved)
PHYLOP_MIN = -14.0
PHYLOP_MAX = 6.0


def clamp_phylop(low: float, high: float) -> tuple[float, float]:
    return max(PHYLOP_MIN, low), min(PHYLOP_MAX, high)


# ── Coordinates ──


@dataclass(frozen=True, order=True)
class Interval:
    """1-based half-open genomic range [start, end)."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Interval start {self.start} > end {self.end}")

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def contains(self, other: Interval) -> bool:
        return self.start <= other.start and other.end <= self.end

    def rounded(self, grid: int) -> Interval:
        """Snap outward to a coarse grid: 12_345-18_000 → 10_000-20_000."""
        return Interval((self.start // grid) * grid, ((self.end // grid) + 1) * grid)


# ── Fetch outcomes ──


class FailureKind(str, Enum):
    """User-facing failure classes."""

    VALIDATION = "validation"
    NETWORK_OFFLINE = "network_offline"
    TIMEOUT = "timeout"
    REMOTE_ERROR = "remote_error"
    MALFORMED_RESPONSE = "malformed_response"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    from_cache: bool = False


@dataclass(frozen=True)
class Empty:
    """Service reached, legitimately nothing there."""

    from_cache: bool = False


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    reason: str  # stable, display-ready


FetchResult = Union[Success[T], Empty, Failure]


def _plain(value):
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def result_to_dict(result: Success | Empty | Failure, value_to_dict=None) -> dict:
    """Serialize a FetchResult for JSON surfaces (CLI, API)."""
    if isinstance(result, Success):
        value = value_to_dict(result.value) if value_to_dict else _plain(result.value)
        return {"status": "success", "from_cache": result.from_cache, "value": value}
    if isinstance(result, Empty):
        return {"status": "empty", "from_cache": result.from_cache}
    return {"status": "failure", "kind": result.kind.value, "reason": result.reason}


# ── Range samples ──


@dataclass
class SampleSlice:
    """Dense per-position view over a covered range.

    scores[i] holds the sample at start+i, 0.0 where the range is covered but
    the service reported nothing; `present` marks the positions that carry a
    real sample.
    """

    start: int
    end: int
    scores: list[float]
    present: list[bool]
    min_score: float = 0.0
    max_score: float = 0.0

    @property
    def has_data(self) -> bool:
        return any(self.present)

    def value_at(self, pos: int) -> float | None:
        if pos < self.start or pos >= self.end:
            return None
        i = pos - self.start
        return self.scores[i] if self.present[i] else None


# ── gnomAD ──


class Impact(str, Enum):
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"
    MODIFIER = "MODIFIER"


_LOF_MARKERS = ("stop_gained", "frameshift", "splice_donor", "splice_acceptor", "start_lost")


@dataclass
class Variant:
    """Population variant from gnomAD."""

    position: int
    ref: str = ""
    alt: str = ""
    allele_frequency: float = 0.0
    allele_count: int = 0
    allele_number: int = 0
    consequence: str = ""  # e.g. "missense_variant"
    impact: Impact = Impact.MODIFIER
    gene_symbol: str = ""
    hgvsc: str = ""
    hgvsp: str = ""

    @property
    def is_lof(self) -> bool:
        return self.impact == Impact.HIGH or any(m in self.consequence for m in _LOF_MARKERS)

    @property
    def is_missense(self) -> bool:
        return "missense" in self.consequence

    @property
    def is_synonymous(self) -> bool:
        return "synonymous" in self.consequence

    @property
    def label(self) -> str:
        return self.hgvsp or self.hgvsc or f"{self.ref}>{self.alt}"

    @property
    def af_string(self) -> str:
        af = self.allele_frequency
        if af == 0:
            return "0"
        if af < 0.0001:
            return f"{af:.2e}"
        if af < 0.01:
            return f"{af:.4f}"
        return f"{af:.3f}"


@dataclass
class VariantData:
    start: int
    end: int
    variants: list[Variant] = field(default_factory=list)


# ── UCSC conservation ──


@dataclass
class ConservationData:
    """Binned (or per-base, when bins == end - start) conservation scores."""

    start: int
    end: int
    scores: list[float] = field(default_factory=list)
    min_score: float = 0.0
    max_score: float = 0.0
    has_data: bool = False

    @property
    def bin_count(self) -> int:
        return len(self.scores)

    @property
    def is_base_level(self) -> bool:
        return len(self.scores) == self.end - self.start

    @classmethod
    def from_slice(cls, sl: SampleSlice) -> ConservationData:
        if not sl.has_data:
            return cls(sl.start, sl.end, list(sl.scores))
        low, high = clamp_phylop(sl.min_score, sl.max_score)
        return cls(sl.start, sl.end, list(sl.scores), low, high, True)


# ── AlphaFold / AlphaMissense ──


@dataclass
class AlphaFoldEntry:
    uniprot_id: str
    uniprot_description: str = ""
    gene: str = ""
    sequence_length: int = 0
    pdb_url: str = ""
    cif_url: str = ""
    pae_image_url: str = ""
    model_url: str = ""
    global_metric_value: float = 0.0  # mean pLDDT

    @property
    def alphafold_url(self) -> str:
        return f"https://alphafold.ebi.ac.uk/entry/{self.uniprot_id}"

    @property
    def viewer_url(self) -> str:
        return f"{self.alphafold_url}#view3d"


PATHOGENIC_THRESHOLD = 0.564
BENIGN_THRESHOLD = 0.34


@dataclass
class MissensePrediction:
    """Pathogenicity prediction for one amino acid substitution."""

    position: int
    reference_aa: str
    alternate_aa: str
    pathogenicity: float  # 0-1, higher = more pathogenic
    classification: str  # "benign" | "ambiguous" | "pathogenic"

    @property
    def description(self) -> str:
        return (
            f"{self.reference_aa}{self.position}{self.alternate_aa}: "
            f"{self.classification} ({self.pathogenicity:.3f})"
        )

    @property
    def is_pathogenic(self) -> bool:
        return self.classification == "pathogenic" or self.pathogenicity >= PATHOGENIC_THRESHOLD

    @property
    def is_benign(self) -> bool:
        return self.classification == "benign" or self.pathogenicity <= BENIGN_THRESHOLD
