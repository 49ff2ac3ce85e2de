from phenosim.effs import cal_effs
from phenosim.log import logger
from phenosim.model import Architecture, load_config
from phenosim.pheno import phenotype
from phenosim.table import read_geno, read_table, write_table, select_columns, summarize_table, variance_summary
from phenosim.viz import Visualizer

import argparse
import inspect
import os

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt


PHENO_KEYS = ("var_pheno", "h2_tr1", "gnt_cov", "h2_trn", "sel_crit", "sel_on", "multrait")


def _check_keys(section: str, cfg: dict, allowed) -> dict:
    unknown = set(cfg) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown keys in config section '{section}': {sorted(unknown)}")
    return cfg


def _effs_keys():
    return [p for p in inspect.signature(cal_effs).parameters if p not in ("geno", "rng")]


def _sample_effs(geno, cfg: dict, rng) -> Architecture:
    effs_cfg = _check_keys("effs", cfg["effs"], _effs_keys())
    return cal_effs(geno, rng=rng, **effs_cfg)


def run_effs(args):
    """Sample QTNs and their effects and save the architecture."""
    logger.info("Starting effs subcommand...")
    cfg = load_config(args.config)
    rng = np.random.default_rng(args.seed)
    geno = read_geno(args.geno)
    logger.info(f"Loaded genotype with {geno.shape[0]} markers and {geno.shape[1]} columns")

    effs = _sample_effs(geno, cfg, rng)
    out_path = effs.save(os.path.join(args.out_dir, f"{args.out_name}.effs.json"))
    logger.info(f"Architecture saved to: {out_path}")


def run_pheno(args):
    """Simulate the phenotypes of one generation."""
    logger.info("Starting pheno subcommand...")
    cfg = load_config(args.config)
    rng = np.random.default_rng(args.seed)
    pheno_cfg = _check_keys("pheno", cfg["pheno"], PHENO_KEYS)

    pop = read_table(args.pop)
    geno = read_geno(args.geno) if args.geno else None
    pos_map = read_table(args.map) if args.map else None

    if args.effs:
        effs = Architecture.load(args.effs)
        logger.info(f"Loaded architecture: {effs!r}")
    elif geno is not None and cfg["effs"]:
        # QTNs are sampled on the dosage matrix of this population
        effs = _sample_effs(geno, cfg, rng)
    else:
        effs = None
        if geno is not None:
            logger.warning("No architecture given; genetic values are set to zero.")

    result = phenotype(
        effs=effs,
        FR=cfg["fr"],
        cv=cfg["cv"],
        pop=pop,
        pop_geno=geno,
        pos_map=pos_map,
        rng=rng,
        **pheno_cfg,
    )

    prefix = os.path.join(args.out_dir, args.out_name)
    write_table(result.info_pheno, f"{prefix}.pheno.tsv")
    if result.multrait:
        for tr, table in result.info_eff.items():
            write_table(table, f"{prefix}.eff.{tr}.tsv")
    else:
        write_table(result.info_eff, f"{prefix}.eff.tsv")
    write_table(result.pop, f"{prefix}.pop.tsv")
    var_df = variance_summary(result.info_tr)
    write_table(var_df, f"{prefix}.variance.tsv")
    if result.effs is not None:
        result.effs.save(f"{prefix}.effs.json")
    logger.info(f"Phenotype results saved with prefix: {prefix}")

    if not result.multrait:
        variance = pd.Series(var_df["variance"].to_numpy(), index=var_df["component"].to_numpy())
        visualizer = Visualizer()
        fig, ax = plt.subplots(figsize=(args.width, 2.5))
        visualizer.plot_variance(variance, ax=ax)
        visualizer.save(fig, f"{prefix}.variance.{args.format}")


def run_stat(args):
    """Summary statistics and distribution plot of simulated tables."""
    logger.info("Starting stat subcommand...")
    df = read_table(args.input, sep=args.sep)
    columns = select_columns(df, args.columns)
    columns = [c for c in columns if pd.api.types.is_numeric_dtype(df[c])]
    if not columns:
        raise ValueError("No numeric columns selected for statistics; check --columns pattern")

    stat_df = summarize_table(df, columns)
    stats_path = write_table(stat_df, os.path.join(args.out_dir, f"{args.out_name}.stats.tsv"))
    logger.info(f"Statistics saved to: {stats_path}")

    visualizer = Visualizer()
    fig = plt.figure(figsize=(args.width, args.height))
    ax = fig.add_subplot(111)
    visualizer.plot_dist(
        df=df,
        kind=args.plot_kind,
        columns=columns,
        colors=args.colors,
        alpha=args.alpha,
        bins=args.bins,
        density=args.density,
        xlabel=args.xlabel,
        ylabel=args.ylabel,
        ax=ax,
    )
    visualizer.save(fig, os.path.join(args.out_dir, f"{args.out_name}.{args.format}"))


def main():
    description = """
    phenosim: Simulate phenotypes with additive, dominance and epistatic genetic effects,
    fixed and random environmental effects for breeding simulation.
    """

    epilog = """
    Example usage:
    phenosim effs --geno geno.txt --config sim.json --seed 42 --out_dir results --out_name gen1
    phenosim pheno --geno geno.txt --pop pop.tsv --config sim.json --effs results/gen1.effs.json --out_dir results
    phenosim stat --input results/phenosim.eff.tsv --columns "^ind_"
    """
    __version__ = "0.1.0"

    parser = argparse.ArgumentParser(
        description=description,
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # effs
    effs_parser = subparsers.add_parser("effs", help="Sample QTNs and QTN effects")
    effs_parser.add_argument("--geno", type=str, required=True, help="Genotype matrix, markers x individuals, no header")
    effs_parser.add_argument("--config", type=str, required=True, help="JSON config file with an 'effs' section")
    effs_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    effs_parser.add_argument("--out_dir", type=str, default=".", help="Output directory")
    effs_parser.add_argument("--out_name", type=str, default="phenosim", help="Output name prefix")
    effs_parser.set_defaults(func=run_effs)

    # pheno
    pheno_parser = subparsers.add_parser("pheno", help="Simulate phenotypes of a population")
    pheno_parser.add_argument("--pop", type=str, required=True, help="Population table (TSV/CSV with header)")
    pheno_parser.add_argument("--geno", type=str, default=None, help="Genotype matrix, markers x individuals, no header")
    pheno_parser.add_argument("--config", type=str, required=True, help="JSON config file (effs, pheno, fr, cv sections)")
    pheno_parser.add_argument("--effs", type=str, default=None, help="Architecture JSON saved by the effs subcommand")
    pheno_parser.add_argument("--map", type=str, default=None, help="Marker map (chrom, position, marker id)")
    pheno_parser.add_argument("--seed", type=int, default=None, help="Random seed")
    pheno_parser.add_argument("--out_dir", type=str, default=".", help="Output directory")
    pheno_parser.add_argument("--out_name", type=str, default="phenosim", help="Output name prefix")
    pheno_parser.add_argument("--width", type=float, default=8, help="Figure width")
    pheno_parser.add_argument("--format", type=str, default="png", help="Figure format: png/pdf/svg")
    pheno_parser.set_defaults(func=run_pheno)

    # stat
    stat_parser = subparsers.add_parser("stat", help="Summary statistics and distribution plot of a table")
    stat_parser.add_argument("--input", type=str, required=True, help="Input table (TSV/CSV with header)")
    stat_parser.add_argument("--sep", type=str, default="auto", help="Input separator: auto/csv/tsv/tab")
    stat_parser.add_argument("--columns", type=str, default=None, help="Regex to select columns (default: all numeric columns)")
    stat_parser.add_argument("--plot-kind", type=str, default="hist", choices=["box", "violin", "hist", "kde"], help="Plot kind for distribution figure")
    stat_parser.add_argument("--bins", type=int, default=30, help="Histogram bins")
    stat_parser.add_argument("--density", action="store_true", help="Histogram as density")
    stat_parser.add_argument("--colors", type=str, nargs="+", help="Colors for plots")
    stat_parser.add_argument("--alpha", type=float, default=0.7, help="Transparency for plots")
    stat_parser.add_argument("--xlabel", type=str, default=None, help="X label")
    stat_parser.add_argument("--ylabel", type=str, default=None, help="Y label")
    stat_parser.add_argument("--width", type=float, default=8, help="Figure width")
    stat_parser.add_argument("--height", type=float, default=6, help="Figure height")
    stat_parser.add_argument("--format", type=str, default="png", help="Figure format: png/pdf/svg")
    stat_parser.add_argument("--out_dir", type=str, default=".", help="Output directory")
    stat_parser.add_argument("--out_name", type=str, default="phenosim_stat", help="Output name prefix")
    stat_parser.set_defaults(func=run_stat)

    args = parser.parse_args()
    if args.command:
        os.makedirs(args.out_dir, exist_ok=True)
        args.func(args)
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
