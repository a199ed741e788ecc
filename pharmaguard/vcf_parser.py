"""
VCF parser for pharmacogenomic variant files.
Extracts GENE, STAR and RS INFO tags from VCF v4.x data lines.

A missing ##fileformat marker fails the whole file. Every other defect
(short line, missing tag, unsupported gene) only drops that line.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from pharmaguard.models import SUPPORTED_GENES, Gene, VariantRecord

logger = logging.getLogger(__name__)

FORMAT_MARKER = "##fileformat=VCF"
SAMPLE_HEADER = "##SAMPLE="
COLUMN_HEADER = "#CHROM"
DEFAULT_PATIENT_ID = "PATIENT_001"
INVALID_FORMAT_ERROR = "Not a valid VCF file."

MIN_COLUMNS = 8
INFO_COLUMN = 7
SAMPLE_ID_RE = re.compile(r"ID=([^,>]+)")
GT_SPLIT_RE = re.compile(r"[/|]")

_TAG_PATTERNS = {
    tag: re.compile(rf"(?:^|;){tag}=([^;]+)") for tag in ("GENE", "STAR", "RS")
}


@dataclass(frozen=True)
class ParsedLine:
    variant: VariantRecord
    alt_count: int


@dataclass
class VCFParseResult:
    patient_id: str = DEFAULT_PATIENT_ID
    variants: List[VariantRecord] = field(default_factory=list)
    genes_detected: List[Gene] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "patient_id": self.patient_id,
            "variants": [v.to_dict() for v in self.variants],
            "genes_detected": [g.value for g in self.genes_detected],
            "success": self.success,
            "error": self.error,
        }


def has_format_marker(content: str) -> bool:
    return FORMAT_MARKER in content


def extract_info_tag(info: str, tag: str) -> Optional[str]:
    pattern = _TAG_PATTERNS.get(tag) or re.compile(rf"(?:^|;){re.escape(tag)}=([^;]+)")
    match = pattern.search(info)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def alt_allele_count(columns: List[str]) -> int:
    """
    Number of ALT alleles the sample carries, read from FORMAT/GT.
    Lines without a usable GT are counted once.
    """
    if len(columns) < 10:
        return 1

    format_fields = columns[8].split(":")
    if "GT" not in format_fields:
        return 1

    sample_fields = columns[9].strip().split(":")
    gt_index = format_fields.index("GT")
    if gt_index >= len(sample_fields) or not sample_fields[gt_index]:
        return 1

    return sum(1 for allele in GT_SPLIT_RE.split(sample_fields[gt_index]) if allele == "1")


def parse_variant_line(line: str) -> Optional[ParsedLine]:
    """Parse one data line; None when the line is not an admissible variant."""
    if line.startswith("#") or not line.strip():
        return None

    columns = line.split("\t")
    if len(columns) < MIN_COLUMNS:
        return None

    info = columns[INFO_COLUMN]
    gene = extract_info_tag(info, "GENE")
    star = extract_info_tag(info, "STAR")
    rs = extract_info_tag(info, "RS")

    if not gene or not star or not rs:
        return None
    if gene not in SUPPORTED_GENES:
        logger.debug("Skipping unsupported gene: %s", gene)
        return None

    return ParsedLine(
        variant=VariantRecord(gene=gene, star_allele=star, rsid=rs),
        alt_count=alt_allele_count(columns),
    )


def iter_variant_lines(lines: Iterable[str]) -> Iterator[ParsedLine]:
    for line in lines:
        parsed = parse_variant_line(line)
        if parsed is not None:
            yield parsed


def extract_patient_id(lines: List[str]) -> str:
    """
    ##SAMPLE=<ID=...> wins over the #CHROM sample column wherever
    the two appear in the header.
    """
    for line in lines:
        if line.startswith(SAMPLE_HEADER):
            match = SAMPLE_ID_RE.search(line)
            if match:
                return match.group(1).strip()

    for line in lines:
        if line.startswith(COLUMN_HEADER):
            cols = line.split("\t")
            if len(cols) >= 10 and cols[9].strip():
                return cols[9].strip()

    return DEFAULT_PATIENT_ID


def parse_vcf(content: str) -> VCFParseResult:
    """Main VCF parsing entry point."""
    if not has_format_marker(content):
        return VCFParseResult(success=False, error=INVALID_FORMAT_ERROR)

    lines = content.split("\n")
    result = VCFParseResult(patient_id=extract_patient_id(lines))

    for parsed in iter_variant_lines(lines):
        gene = parsed.variant.gene
        if gene not in result.genes_detected:
            result.genes_detected.append(gene)

        # 0/0 lines only prove the gene was sequenced; 1/1 contributes both copies
        result.variants.extend([parsed.variant] * min(parsed.alt_count, 2))

    logger.debug(
        "Parsed %d variants across %d genes for %s",
        len(result.variants), len(result.genes_detected), result.patient_id,
    )
    return result
