#!/env/python
# DESCRIPTION
#    Computes flow based read x haplotype likelihood matrices for a set of regions
#    and writes them in the text dump format
from __future__ import annotations

import argparse
import sys

import pandas as pd
import pysam

from ugflow import logger
from ugflow.alignment.likelihood_engine import FlowBasedLikelihoodEngine
from ugflow.alignment.likelihood_writer import write_likelihoods
from ugflow.flow_format.flow_based_alignment_args import FlowBasedAlignmentArgs, add_argparse_arguments
from ugflow.flow_format.flow_based_haplotype import Haplotype
from ugflow.flow_format.flow_based_read import hard_clip_uncertain_bases
from ugflow.flow_format.read_group_info import get_read_groups

DEFAULT_SAMPLE = "sample"
HAPLOTYPE_COLUMNS = ["contig", "start", "cigar", "bases"]


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser("compute_read_likelihoods", description=run.__doc__)
    parser.add_argument("--input_bam", required=True, help="Indexed BAM/CRAM file of flow based reads")
    parser.add_argument(
        "--haplotypes",
        required=True,
        help="Tab separated file with columns contig, start (0-based), cigar, bases. "
        "Haplotypes with the same contig and start form a region, the first one is the reference",
    )
    parser.add_argument("--output_file", required=True, help="Output likelihoods file")
    parser.add_argument("--reference", help="Reference fasta (required for CRAM input)")
    parser.add_argument(
        "--interval",
        help="Write only regions contained in the interval (contig:start-end, 1-based inclusive)",
    )
    add_argparse_arguments(parser)
    return parser.parse_args(argv[1:])


def parse_interval(interval: str) -> tuple:
    """Converts contig:start-end (1-based, inclusive) to (contig, start, end) (0-based, half open)"""
    contig, coords = interval.rsplit(":", 1)
    start, end = coords.replace(",", "").split("-")
    return (contig, int(start) - 1, int(end))


def read_haplotypes(haplotypes_file: str) -> list:
    """Reads haplotypes file and groups the haplotypes by region

    Parameters
    ----------
    haplotypes_file: str
        Tab separated file with columns contig, start, cigar, bases

    Returns
    -------
    list
        List of lists of Haplotype, one list per region in the order of the file
    """
    df = pd.read_csv(haplotypes_file, sep="\t")
    missing = set(HAPLOTYPE_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Haplotypes file {haplotypes_file} is missing columns {sorted(missing)}")
    df = df.astype({"contig": str, "start": int, "cigar": str, "bases": str})
    regions = []
    for _, region_df in df.groupby(["contig", "start"], sort=False):
        regions.append(
            [
                Haplotype(
                    bases=row.bases, start=int(row.start), cigar=row.cigar, is_reference=i == 0, contig=row.contig
                )
                for i, row in enumerate(region_df.itertuples())
            ]
        )
    return regions


def split_reads_by_sample(reads: list, header: pysam.AlignmentHeader) -> dict:
    """Groups the reads by the sample (SM) of their read group, keeps the order of the reads"""
    samples = {x["ID"]: x.get("SM", DEFAULT_SAMPLE) for x in get_read_groups(header)}
    result = {}
    for read in reads:
        sample = samples.get(read.get_tag("RG"), DEFAULT_SAMPLE) if read.has_tag("RG") else DEFAULT_SAMPLE
        result.setdefault(sample, []).append(read)
    return result


def clip_uncertain_flows(reads: list, header: pysam.AlignmentHeader, engine: FlowBasedLikelihoodEngine) -> list:
    """Hard clips the uncertain 5' flows of the reads, reads that are clipped completely are dropped"""
    result = []
    for read in reads:
        info = engine.read_group_cache.get_for_read(header, read)
        clipped = hard_clip_uncertain_bases(read, info.flow_order, engine.args)
        if clipped is None:
            logger.debug("Read %s is fully clipped by the uncertain flows", read.query_name)
            continue
        result.append(clipped)
    return result


def run(argv: list[str]):
    """Computes likelihoods of flow based reads given candidate haplotypes"""
    args = parse_args(argv)
    alignment_args = FlowBasedAlignmentArgs.from_namespace(args)
    interval = parse_interval(args.interval) if args.interval else None
    engine = FlowBasedLikelihoodEngine(alignment_args)
    regions = read_haplotypes(args.haplotypes)
    logger.info("Read %d regions from %s", len(regions), args.haplotypes)

    n_written = 0
    with pysam.AlignmentFile(args.input_bam, reference_filename=args.reference) as alignment_file, open(
        args.output_file, "w"
    ) as out:
        header = alignment_file.header
        for haplotypes in regions:
            first = haplotypes[0]
            reads = [
                x
                for x in alignment_file.fetch(first.contig, first.start, first.end)
                if not x.is_unmapped and not x.is_secondary and not x.is_supplementary
            ]
            if alignment_args.num_uncertain_flows > 0:
                reads = clip_uncertain_flows(reads, header, engine)
            likelihoods = engine.compute_read_likelihoods(haplotypes, split_reads_by_sample(reads, header), header)
            if not likelihoods:
                logger.debug("No reads at %s:%d-%d", first.contig, first.start, first.end)
                continue
            n_written += write_likelihoods(out, likelihoods, interval)
    logger.info("Wrote likelihoods of %d regions to %s", n_written, args.output_file)


def main():
    run(sys.argv)


if __name__ == "__main__":
    main()
