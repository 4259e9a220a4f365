import argparse
import logging
import sys

import numpy as np

from metrics_collector import PerformanceMetrics
from spmf import baca_spmf, tulis_hasil
from tku_pso import DEFAULT_ITERATIONS, DEFAULT_K, DEFAULT_POP_SIZE, TKUPSO
from utility_db import UtilityDatabase


def build_parser():
    parser = argparse.ArgumentParser(
        prog='tku-pso',
        description='Top-k high utility itemset mining dengan particle swarm optimization')
    parser.add_argument('input', help='file database input dalam format SPMF')
    parser.add_argument('output', help='file tujuan untuk itemset yang ditemukan')
    parser.add_argument('--pop-size', type=int, default=DEFAULT_POP_SIZE, help='ukuran populasi')
    parser.add_argument('--iterations', type=int, default=DEFAULT_ITERATIONS, help='jumlah iterasi')
    parser.add_argument('-k', type=int, default=DEFAULT_K, help='jumlah top-k HUI yang dicari')
    parser.add_argument('--max-estimate', action='store_true',
                        help='gunakan estimasi utilitas maksimum, bukan rata-rata')
    parser.add_argument('--seed', type=int, default=None, help='seed generator acak')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.pop_size <= 0:
        parser.error('--pop-size harus bilangan bulat positif')
    if args.iterations < 0:
        parser.error('--iterations tidak boleh negatif')
    if args.k <= 0:
        parser.error('-k harus bilangan bulat positif')

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )

    metrics = PerformanceMetrics()
    metrics.start_overall_measurement()
    try:
        db = UtilityDatabase(args.k).muat_transaksi(baca_spmf(args.input)).siapkan()
    except (OSError, ValueError) as e:
        print(f"Gagal membaca {args.input}: {e}", file=sys.stderr)
        return 1
    metrics.check_memory()

    tku = TKUPSO(db, pop_size=args.pop_size, iterations=args.iterations, k=args.k,
                 avg_estimate=not args.max_estimate, rng=np.random.default_rng(args.seed))
    solutions = tku.run()
    metrics.end_overall_measurement()

    tulis_hasil(args.output, tku.hasil())
    print(metrics.format_stats(solutions))
    return 0


if __name__ == '__main__':
    sys.exit(main())
