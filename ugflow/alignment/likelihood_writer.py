# Text dump of read x haplotype likelihood matrices and its parser
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, TextIO

import numpy as np
import pandas as pd

from ugflow import logger
from ugflow.alignment.likelihood_engine import SampleLikelihoods

LOCATION_PREFIX = "> Location "
SAMPLE_PREFIX = ">> Sample "
FULL_SECTION = ">>> Read->Haplotype in Full"


def format_location(contig: str, start: int, end: int) -> str:
    """Location of the haplotypes as it appears in the dump (1-based, inclusive)"""
    return f"{contig}:{start + 1}-{end}"


def write_likelihoods(fid: TextIO, likelihoods: dict, interval: tuple | None = None) -> bool:
    """Writes likelihoods of a single region in the following format::

        > Location chr1:1001-1040
        >> Haplotypes
        0000	ACGT...
        >> Sample HG001
        >>> Reads
        0000	read_name
        >>> Matrix
        -0.1 -3.2   (row per haplotype, column per read)
        >>> Read->Haplotype in Full
        0000	read_name	-0.1	0000	ACGT...

    Parameters
    ----------
    fid: TextIO
        Output stream
    likelihoods: dict
        Sample name -> SampleLikelihoods, all samples share the haplotypes
    interval: tuple, optional
        (contig, start, end) - only regions contained in the interval are written

    Returns
    -------
    bool
        True if the region was written
    """
    if not likelihoods:
        return False
    haplotypes = next(iter(likelihoods.values())).haplotypes
    first_hap = haplotypes[0]
    if interval is not None:
        contig, start, end = interval
        if first_hap.contig != contig or first_hap.start < start or first_hap.end > end:
            return False

    fid.write(f"{LOCATION_PREFIX}{format_location(first_hap.contig, first_hap.start, first_hap.end)}\n")
    fid.write(">> Haplotypes\n")
    for i, hap in enumerate(haplotypes):
        fid.write(f"{i:04d}\t{hap.bases}\n")
    for sample, sample_likelihoods in likelihoods.items():
        _write_sample(fid, sample, sample_likelihoods)
    logger.debug("Wrote likelihoods of %d samples at %s", len(likelihoods), first_hap.contig)
    return True


def _write_sample(fid: TextIO, sample: str, sample_likelihoods: SampleLikelihoods) -> None:
    matrix = sample_likelihoods.matrix
    read_names = sample_likelihoods.read_names
    fid.write(f"{SAMPLE_PREFIX}{sample}\n")
    fid.write(">>> Reads\n")
    for i, name in enumerate(read_names):
        fid.write(f"{i:04d}\t{name}\n")
    fid.write(">>> Matrix\n")
    for row in matrix:
        fid.write(" ".join(str(float(x)) for x in row) + "\n")
    fid.write(FULL_SECTION + "\n")
    for allele, hap in enumerate(sample_likelihoods.haplotypes):
        for read, name in enumerate(read_names):
            fid.write(f"{read:04d}\t{name}\t{float(matrix[allele, read])}\t{allele:04d}\t{hap.bases}\n")
        fid.write("\n")


@dataclass
class _ParsedSample:
    read_names: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    full: dict = field(default_factory=dict)

    def to_frame(self, haplotypes: list) -> pd.DataFrame:
        # the matrix section is preferred, the per read lines are used when it is missing
        if self.rows:
            matrix = np.vstack(self.rows)
        else:
            matrix = np.zeros((len(haplotypes), len(self.read_names)))
            for (allele, read), value in self.full.items():
                matrix[allele, read] = value
        result = pd.DataFrame(data=matrix, columns=self.read_names)
        result["sequence"] = haplotypes
        return result


@dataclass
class _ParsedRegion:
    location: str
    haplotypes: list = field(default_factory=list)
    samples: dict = field(default_factory=dict)


SECTIONS = {">> Haplotypes": "haplotypes", ">>> Reads": "reads", ">>> Matrix": "matrix", FULL_SECTION: "full"}


def _iter_regions(lines: Iterable[str]) -> Iterator[_ParsedRegion]:
    region = sample = section = None
    for line in lines:
        line = line.rstrip("\n")
        if not line.strip():
            continue
        if line.startswith(LOCATION_PREFIX):
            if region is not None:
                yield region
            region = _ParsedRegion(location=line[len(LOCATION_PREFIX) :].strip())
            section = None
        elif line.startswith(SAMPLE_PREFIX) and region is not None:
            sample = region.samples.setdefault(line[len(SAMPLE_PREFIX) :].strip(), _ParsedSample())
            section = None
        elif line in SECTIONS and region is not None:
            section = SECTIONS[line]
        elif section == "haplotypes":
            region.haplotypes.append(line.split("\t")[1])
        elif section == "reads":
            sample.read_names.append(line.split("\t")[1])
        elif section == "matrix":
            sample.rows.append(np.array(line.split(), dtype=float))
        elif section == "full":
            read, _, value, allele = line.split("\t")[:4]
            sample.full[(int(allele), int(read))] = float(value)
        else:
            raise ValueError(f"Unexpected line in the likelihoods file: {line}")
    if region is not None:
        yield region


def parse_haplotype_matrix_file(filename: str) -> dict:
    """Reads the likelihoods written by `write_likelihoods`

    Parameters
    ----------
    filename: str
        File name

    Returns
    -------
    dict
        Location -> sample -> DataFrame with a column of log10 likelihoods per read and the
        haplotype bases in the `sequence` column (row per haplotype)

    Raises
    ------
    ValueError
        If the file contains lines outside of the known sections
    """
    with open(filename, encoding="latin-1") as fid:
        return {
            region.location: {name: sample.to_frame(region.haplotypes) for name, sample in region.samples.items()}
            for region in _iter_regions(fid)
        }
